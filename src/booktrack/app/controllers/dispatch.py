# booktrack/app/controllers/dispatch.py
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any

from booktrack.domain.entities.booking import (
    TERMINAL,
    TRACKABLE,
    Booking,
    BookingEvent,
    BookingFlow,
    BookingStatus,
    EventType,
)
from booktrack.domain.entities.geography import GeoPoint
from booktrack.domain.entities.location import LocationUpdate, ProviderLocationSample
from booktrack.domain.errors import InvalidTransition
from booktrack.domain.geo import distance_km
from booktrack.domain.lifecycle import BookingLifecycle
from booktrack.runtime.clock import Clock, SystemClock
from booktrack.runtime.hooks import NoopHooks, TrackingHooks
from booktrack.services.eta import (
    ARRIVAL_THRESHOLD_KM,
    DEFAULT_SPEED_KMH,
    ETAEngine,
    TrackingStatus,
    eta_minutes,
    eta_text,
    status_for,
)
from booktrack.services.location_channel import LocationChannel, SubscriptionHandle
from booktrack.services.notifier import Notifier, notify_safely

log = logging.getLogger(__name__)

_watch_ids = itertools.count(1)

NOTIFY_CONFIRMED = "booking_confirmed"
NOTIFY_ARRIVED = "provider_arrived"


@dataclass(frozen=True)
class TrackingUpdate:
    """Egress record for the presentation layer."""

    booking_id: str
    provider_id: str
    status: TrackingStatus
    at: datetime
    distance_km: float | None = None
    eta_minutes: int | None = None
    arrived: bool = False
    position: ProviderLocationSample | None = None


class DispatchSession:
    """Binds one active booking to one location subscription and one ETA engine."""

    def __init__(self, booking_id: str, provider_id: str, destination: GeoPoint, engine: ETAEngine):
        self.booking_id = booking_id
        self.provider_id = provider_id
        self.destination = destination
        self.engine = engine
        self.last: TrackingUpdate | None = None
        self._subscription: SubscriptionHandle | None = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._subscription

    def bind(self, handle: SubscriptionHandle) -> bool:
        """Attach the subscription; False if the session was closed meanwhile."""
        with self._lock:
            self._subscription = handle
            return not self._closed

    def close(self) -> tuple[bool, SubscriptionHandle | None]:
        with self._lock:
            if self._closed:
                return False, None
            self._closed = True
            return True, self._subscription


class WatchHandle:
    def __init__(self, booking_id: str, handler: Callable[[TrackingUpdate], None]):
        self.id = next(_watch_ids)
        self.booking_id = booking_id
        self.handler = handler
        self.active = True


def _is_confirming(ev: BookingEvent) -> bool:
    if ev.type in (EventType.CONFIRMED, EventType.PAID):
        return True
    return ev.type == EventType.CREATED and bool(ev.meta.get("auto_confirmed"))


class DispatchOrchestrator:
    """
    Top-level coordinator.
      • Opens a DispatchSession when a registered booking becomes confirmed/in_progress.
      • Feeds every location update through the session's ETAEngine and republishes
        it as a TrackingUpdate to watchers.
      • On arrival: notifies and moves a confirmed booking to in_progress.
      • On any terminal transition (or stop_tracking): unsubscribes, exactly once.
      • A terminal booking is forgotten after its watchers get one final "ended" update.
      • A customer stop sticks until open_session is called for that booking again.
    """

    def __init__(
        self,
        channel: LocationChannel,
        notifier: Notifier,
        *,
        clock: Clock | None = None,
        hooks: TrackingHooks | None = None,
        arrival_threshold_km: float = ARRIVAL_THRESHOLD_KM,
        default_speed_kmh: float = DEFAULT_SPEED_KMH,
    ):
        self.channel = channel
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.hooks = hooks or NoopHooks()
        self.arrival_threshold_km = arrival_threshold_km
        self.default_speed_kmh = default_speed_kmh
        self._lifecycles: dict[str, BookingLifecycle] = {}
        self._sessions: dict[str, DispatchSession] = {}
        self._watchers: dict[str, tuple[WatchHandle, ...]] = {}
        self._stopped: set[str] = set()
        self._lock = threading.Lock()

    # --------------- Booking registry --------------------

    def register(self, lifecycle: BookingLifecycle) -> DispatchSession | None:
        """Start observing a booking. Already-confirmed bookings are picked up right away."""
        if lifecycle.status in TERMINAL:
            return None
        with self._lock:
            if lifecycle.booking_id in self._lifecycles:
                return self._sessions.get(lifecycle.booking_id)
            self._lifecycles[lifecycle.booking_id] = lifecycle
        lifecycle.on_transition(self._on_transition)

        events = lifecycle.events
        if events and _is_confirming(events[-1]) and lifecycle.status == BookingStatus.CONFIRMED:
            self._notify_confirmed(lifecycle.booking, events[-1])
        if lifecycle.status in TRACKABLE:
            return self.open_session(lifecycle.booking_id)
        return None

    def lifecycle(self, booking_id: str) -> BookingLifecycle | None:
        return self._lifecycles.get(booking_id)

    def session(self, booking_id: str) -> DispatchSession | None:
        return self._sessions.get(booking_id)

    def sessions(self) -> list[DispatchSession]:
        with self._lock:
            return list(self._sessions.values())

    # --------------- Session lifecycle -------------------

    def open_session(self, booking_id: str, *, resume: bool = True) -> DispatchSession | None:
        """Start tracking a registered booking. resume=False leaves a stopped booking alone."""
        lc = self._lifecycles.get(booking_id)
        if lc is None:
            if not resume:
                return None
            raise KeyError(f"booking {booking_id} is not registered")
        b = lc.booking
        if b.status not in TRACKABLE or not b.provider_id or b.destination is None:
            return None

        with self._lock:
            if booking_id not in self._lifecycles:
                return None
            if booking_id in self._stopped:
                if not resume:
                    return None
                self._stopped.discard(booking_id)
            s = self._sessions.get(booking_id)
            if s is not None and not s.closed:
                return s
            engine = ETAEngine(
                arrival_threshold_km=self.arrival_threshold_km,
                default_speed_kmh=self.default_speed_kmh,
                destination=b.destination,
            )
            s = DispatchSession(booking_id, b.provider_id, b.destination, engine)
            self._sessions[booking_id] = s

        self.hooks.session_opened(booking_id, provider_id=b.provider_id)
        handle = self.channel.subscribe(b.provider_id, partial(self._on_update, s))
        if not s.bind(handle):
            # closed by a racing terminal transition before we got the handle
            self.channel.unsubscribe(handle)
        elif lc.status in TERMINAL:
            # the terminal listener ran before this session existed
            self._close_session(booking_id, reason=lc.status.value)
        return s

    def stop_tracking(self, booking_id: str) -> bool:
        """Customer-initiated stop. The booking is untouched; later transitions do not reopen tracking."""
        with self._lock:
            if booking_id in self._lifecycles:
                self._stopped.add(booking_id)
        return self._close_session(booking_id, reason="stopped")

    def shutdown(self) -> None:
        for s in self.sessions():
            self._close_session(s.booking_id, reason="shutdown")

    def _close_session(self, booking_id: str, *, reason: str) -> bool:
        with self._lock:
            s = self._sessions.get(booking_id)
        if s is None:
            return False
        first, handle = s.close()
        if not first:
            return False
        if handle is not None:
            self.channel.unsubscribe(handle)
        with self._lock:
            if self._sessions.get(booking_id) is s:
                del self._sessions[booking_id]
        self.hooks.session_closed(booking_id, reason=reason)
        return True

    def _forget(self, b: Booking, last: TrackingUpdate | None) -> None:
        with self._lock:
            if self._lifecycles.pop(b.id, None) is None:
                return
            watchers = self._watchers.pop(b.id, ())
            self._stopped.discard(b.id)
        if not watchers:
            return
        final = TrackingUpdate(
            booking_id=b.id,
            provider_id=b.provider_id or "",
            status="ended",
            at=self.clock.now(),
            position=last.position if last is not None else None,
        )
        for w in watchers:
            self._call(w, final)
            w.active = False

    # --------------- Egress ------------------------------

    def watch(self, booking_id: str, handler: Callable[[TrackingUpdate], None]) -> WatchHandle:
        """
        Receive TrackingUpdates for a booking; the last known one is replayed at once.
        Watching a booking that is not registered (or already ended) yields an inactive handle.
        """
        w = WatchHandle(booking_id, handler)
        with self._lock:
            if booking_id not in self._lifecycles:
                w.active = False
                return w
            self._watchers[booking_id] = (*self._watchers.get(booking_id, ()), w)
            s = self._sessions.get(booking_id)
        if s is not None and s.last is not None:
            self._call(w, s.last)
        return w

    def unwatch(self, handle: WatchHandle) -> None:
        if not handle.active:
            return
        handle.active = False
        with self._lock:
            rest = tuple(w for w in self._watchers.get(handle.booking_id, ()) if w is not handle)
            if rest:
                self._watchers[handle.booking_id] = rest
            else:
                self._watchers.pop(handle.booking_id, None)

    def _publish(self, tu: TrackingUpdate) -> None:
        for w in self._watchers.get(tu.booking_id, ()):
            self._call(w, tu)

    def _call(self, w: WatchHandle, tu: TrackingUpdate) -> None:
        if not w.active:
            return
        try:
            w.handler(tu)
        except Exception as exc:
            self.hooks.handler_error(tu.provider_id, exc=exc)

    # --------------- Event handlers ----------------------

    def _on_transition(self, lc: BookingLifecycle, ev: BookingEvent) -> None:
        b = lc.booking
        if b.status in TERMINAL:
            s = self._sessions.get(b.id)
            self._close_session(b.id, reason=ev.type.value)
            self._forget(b, s.last if s is not None else None)
            return
        if _is_confirming(ev):
            self._notify_confirmed(b, ev)
        if b.status in TRACKABLE:
            self.open_session(b.id, resume=False)

    def _on_update(self, s: DispatchSession, update: LocationUpdate) -> None:
        if s.closed:
            return
        now = self.clock.now()
        if not update.known:
            tu = TrackingUpdate(s.booking_id, s.provider_id, "unknown", now)
            s.last = tu
            self._publish(tu)
            return

        est = s.engine.recompute(update.sample)
        tu = TrackingUpdate(
            booking_id=s.booking_id,
            provider_id=s.provider_id,
            status=status_for(est),
            at=now,
            distance_km=est.distance_km,
            eta_minutes=est.eta_minutes,
            arrived=est.arrived,
            position=update.sample,
        )
        s.last = tu
        self._publish(tu)
        if est.arrived:
            self._on_arrival(s, est.distance_km)

    def _on_arrival(self, s: DispatchSession, dist_km: float) -> None:
        self.hooks.arrival(s.booking_id, provider_id=s.provider_id, distance_km=dist_km)
        notify_safely(
            self.notifier,
            s.booking_id,
            NOTIFY_ARRIVED,
            {
                "provider_id": s.provider_id,
                "distance_km": round(dist_km, 3),
                "eta_text": "Arriving now",
                "message": "Your service provider has arrived.",
            },
            hooks=self.hooks,
        )
        lc = self._lifecycles.get(s.booking_id)
        if lc is None or lc.status != BookingStatus.CONFIRMED:
            return
        try:
            lc.start(request_id=f"arrival:{s.booking_id}", trigger="arrival")
        except InvalidTransition as exc:
            # lost the race against a cancel; nothing to undo
            log.info("arrival for %s ignored: %s", s.booking_id, exc)

    # --------------- Notifications -----------------------

    def _confirmation_payload(self, b: Booking, ev: BookingEvent) -> dict[str, Any]:
        now = self.clock.now()
        payload: dict[str, Any] = {
            "provider_id": b.provider_id,
            "flow": b.flow.value,
            "scheduled_start": b.scheduled_start.isoformat(),
        }
        minutes = None
        live = self.channel.store.get_latest(b.provider_id) if b.provider_id else None
        if live is not None and b.destination is not None:
            minutes = eta_minutes(distance_km(live, b.destination), live.speed_kmh, self.default_speed_kmh)
        elif b.flow == BookingFlow.IMMEDIATE and ev.meta.get("estimated_arrival_minutes") is not None:
            minutes = round(ev.meta["estimated_arrival_minutes"])
        if minutes is not None:
            payload["eta_minutes"] = minutes
            payload["eta_text"] = eta_text(minutes, now)
            payload["message"] = f"Your service provider is on the way. Estimated arrival: {payload['eta_text']}"
        else:
            payload["message"] = f"Your booking is confirmed for {b.scheduled_start:%Y-%m-%d %H:%M}."
        return payload

    def _notify_confirmed(self, b: Booking, ev: BookingEvent) -> None:
        notify_safely(
            self.notifier, b.id, NOTIFY_CONFIRMED, self._confirmation_payload(b, ev), hooks=self.hooks
        )
