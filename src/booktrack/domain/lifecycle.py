# domain/lifecycle.py
"""
Booking state machine.

    pending -> awaiting_payment -> confirmed -> in_progress -> completed
    canceled   from pending | awaiting_payment | confirmed
    disputed   from in_progress | completed

Every committed transition appends exactly one BookingEvent. A rejected request
(InvalidTransition) or a failed save (PersistenceError) leaves status and log untouched.
"""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from booktrack.domain.entities.booking import (
    Booking,
    BookingEvent,
    BookingFlow,
    BookingStatus,
    EventType,
)
from booktrack.domain.entities.geography import LatLng, to_point
from booktrack.domain.errors import InvalidBooking, InvalidTransition, PersistenceError
from booktrack.runtime.clock import Clock, SystemClock, as_utc
from booktrack.runtime.hooks import NoopHooks, TrackingHooks
from booktrack.services.persistence import BookingRepository, NullBookingRepository

log = logging.getLogger(__name__)

S = BookingStatus

Listener = Callable[["BookingLifecycle", BookingEvent], None]

# action -> (allowed sources, target status or None for "unchanged", event type)
TRANSITIONS: dict[str, tuple[frozenset[BookingStatus], BookingStatus | None, EventType]] = {
    "request_payment": (frozenset({S.PENDING}), S.AWAITING_PAYMENT, EventType.PAYMENT_REQUESTED),
    "mark_paid": (frozenset({S.AWAITING_PAYMENT}), S.CONFIRMED, EventType.PAID),
    "confirm": (frozenset({S.PENDING}), S.CONFIRMED, EventType.CONFIRMED),
    "start": (frozenset({S.CONFIRMED}), S.IN_PROGRESS, EventType.STARTED),
    "complete": (frozenset({S.IN_PROGRESS}), S.COMPLETED, EventType.COMPLETED),
    "cancel": (
        frozenset({S.PENDING, S.AWAITING_PAYMENT, S.CONFIRMED}),
        S.CANCELED,
        EventType.CANCELED,
    ),
    "dispute": (frozenset({S.IN_PROGRESS, S.COMPLETED}), S.DISPUTED, EventType.DISPUTED),
    "reschedule": (
        frozenset({S.PENDING, S.AWAITING_PAYMENT, S.CONFIRMED}),
        None,
        EventType.RESCHEDULED,
    ),
    "release_escrow": (frozenset({S.COMPLETED}), None, EventType.ESCROW_RELEASED),
    "refund": (frozenset({S.CANCELED}), None, EventType.REFUNDED),
    "resolve_dispute_release": (frozenset({S.DISPUTED}), None, EventType.ESCROW_RELEASED),
    "resolve_dispute_refund": (frozenset({S.DISPUTED}), None, EventType.REFUNDED),
}


def _guard(action: str, b: Booking) -> str | None:
    """Extra conditions beyond the source status. Returns a reason when blocked."""
    if action == "release_escrow" and b.escrow_released:
        return "escrow already released"
    if action == "dispute" and b.escrow_released:
        return "escrow already released"
    if action == "refund" and b.refunded:
        return "already refunded"
    if action.startswith("resolve_dispute") and b.dispute_resolved:
        return "dispute already resolved"
    return None


@dataclass(frozen=True)
class BookingPolicy:
    dispatch_delay_minutes: float = 5.0
    default_service_duration_minutes: float = 120.0


class BookingLifecycle:
    def __init__(
        self,
        booking: Booking,
        *,
        events: list[BookingEvent] | None = None,
        repository: BookingRepository | None = None,
        clock: Clock | None = None,
        hooks: TrackingHooks | None = None,
    ):
        self._booking = booking
        self._events: list[BookingEvent] = list(events or [])
        self._requests: dict[tuple[str, str], BookingEvent] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()
        self.repository = repository or NullBookingRepository()
        self.clock = clock or SystemClock()
        self.hooks = hooks or NoopHooks()

    # --------------- Read side ---------------------------

    @property
    def booking(self) -> Booking:
        with self._lock:
            return replace(self._booking)

    @property
    def booking_id(self) -> str:
        return self._booking.id

    @property
    def status(self) -> BookingStatus:
        return self._booking.status

    @property
    def events(self) -> tuple[BookingEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def can(self, action: str) -> bool:
        src, _, _ = TRANSITIONS[action]
        with self._lock:
            return self._booking.status in src and _guard(action, self._booking) is None

    def on_transition(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    # --------------- Transitions -------------------------

    def request_payment(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("request_payment", request_id, meta)

    def mark_paid(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("mark_paid", request_id, meta)

    def confirm(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("confirm", request_id, meta)

    def start(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("start", request_id, meta)

    def complete(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("complete", request_id, meta)

    def cancel(self, *, reason: str | None = None, request_id: str | None = None, **meta) -> BookingEvent:
        if reason:
            meta["reason"] = reason
        return self._apply("cancel", request_id, meta)

    def dispute(self, *, reason: str | None = None, request_id: str | None = None, **meta) -> BookingEvent:
        if reason:
            meta["reason"] = reason
        return self._apply("dispute", request_id, meta)

    def reschedule(
        self,
        new_start: datetime,
        *,
        duration_minutes: float | None = None,
        request_id: str | None = None,
        **meta,
    ) -> BookingEvent:
        """Move the slot, keeping its length unless duration_minutes is given."""
        new_start = as_utc(new_start)

        def mutate(nb: Booking):
            if new_start <= self._now():
                raise InvalidBooking("rescheduled start must be in the future")
            length = (
                timedelta(minutes=duration_minutes)
                if duration_minutes is not None
                else nb.scheduled_end - nb.scheduled_start
            )
            if length <= timedelta(0):
                raise InvalidBooking("service duration must be positive")
            meta.update(
                previous_start=nb.scheduled_start.isoformat(),
                previous_end=nb.scheduled_end.isoformat(),
            )
            nb.scheduled_start, nb.scheduled_end = new_start, new_start + length

        return self._apply("reschedule", request_id, meta, mutate)

    def release_escrow(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply(
            "release_escrow", request_id, meta, lambda nb: setattr(nb, "escrow_released", True)
        )

    def refund(self, *, request_id: str | None = None, **meta) -> BookingEvent:
        return self._apply("refund", request_id, meta, lambda nb: setattr(nb, "refunded", True))

    def resolve_dispute(self, *, refund: bool, request_id: str | None = None, **meta) -> BookingEvent:
        def mutate(nb: Booking):
            nb.dispute_resolved = True
            if refund:
                nb.refunded = True
            else:
                nb.escrow_released = True

        action = "resolve_dispute_refund" if refund else "resolve_dispute_release"
        return self._apply(action, request_id, meta, mutate)

    # --------------- Helpers -----------------------------

    def _now(self) -> datetime:
        now = self.clock.now()
        # keep the log non-decreasing even if the wall clock steps back
        if self._events and now < self._events[-1].at:
            return self._events[-1].at
        return now

    def _apply(
        self,
        action: str,
        request_id: str | None,
        meta: dict[str, Any],
        mutate: Callable[[Booking], None] | None = None,
    ) -> BookingEvent:
        src, dst, etype = TRANSITIONS[action]
        with self._lock:
            key = (action, request_id) if request_id is not None else None
            if key is not None and key in self._requests:
                return self._requests[key]  # duplicate delivery of the same request

            b = self._booking
            reason = None if b.status in src else f"status is {b.status.value}"
            reason = reason or _guard(action, b)
            if reason:
                self.hooks.transition_rejected(b, action=action, reason=reason)
                raise InvalidTransition(b.id, b.status, action)

            now = self._now()
            nb = replace(b, status=dst or b.status, updated_at=now, version=b.version + 1)
            if mutate:
                mutate(nb)
            if request_id is not None:
                meta = {**meta, "request_id": request_id}
            ev = BookingEvent(b.id, etype, now, seq=len(self._events) + 1, meta=dict(meta))

            _save(self.repository, nb, ev)

            self._booking = nb
            self._events.append(ev)
            if key is not None:
                self._requests[key] = ev
            self.hooks.transition(nb, ev)

        self._emit(ev)
        return ev

    def _emit(self, ev: BookingEvent) -> None:
        for fn in list(self._listeners):
            try:
                fn(self, ev)
            except Exception:
                log.exception("transition listener failed for booking %s", ev.booking_id)


def _save(repository: BookingRepository, booking: Booking, event: BookingEvent) -> None:
    try:
        repository.save(booking, event)
    except PersistenceError:
        raise
    except Exception as exc:
        raise PersistenceError(f"booking {booking.id}: save failed: {exc}") from exc


# ------------------ Creation paths ----------------------------


def _new_lifecycle(
    booking: Booking, meta: dict[str, Any], *, repository, clock, hooks
) -> BookingLifecycle:
    ev = BookingEvent(booking.id, EventType.CREATED, booking.created_at, seq=1, meta=meta)
    repository = repository or NullBookingRepository()
    _save(repository, booking, ev)
    lc = BookingLifecycle(
        booking, events=[ev], repository=repository, clock=clock, hooks=hooks
    )
    lc.hooks.transition(booking, ev)
    return lc


def create_scheduled(
    *,
    customer_id: str,
    provider_id: str | None,
    service_id: str | None,
    start: datetime,
    duration_minutes: float | None = None,
    destination: LatLng | None = None,
    notes: str | None = None,
    booking_id: str | None = None,
    repository: BookingRepository | None = None,
    clock: Clock | None = None,
    hooks: TrackingHooks | None = None,
    policy: BookingPolicy | None = None,
) -> BookingLifecycle:
    """Customer-chosen slot; starts in pending and waits for explicit confirmation."""
    clock = clock or SystemClock()
    policy = policy or BookingPolicy()
    now = clock.now()
    start = as_utc(start)
    if start <= now:
        raise InvalidBooking(f"start {start.isoformat()} is not in the future")
    minutes = policy.default_service_duration_minutes if duration_minutes is None else duration_minutes
    end = start + timedelta(minutes=minutes)
    if end <= start:
        raise InvalidBooking("service duration must be positive")

    booking = Booking(
        id=booking_id or uuid.uuid4().hex,
        customer_id=customer_id,
        provider_id=provider_id,
        service_id=service_id,
        scheduled_start=start,
        scheduled_end=end,
        status=BookingStatus.PENDING,
        created_at=now,
        updated_at=now,
        flow=BookingFlow.SCHEDULED,
        destination=to_point(destination) if destination is not None else None,
        notes=notes,
        version=1,
    )
    return _new_lifecycle(
        booking,
        {"flow": BookingFlow.SCHEDULED.value},
        repository=repository,
        clock=clock,
        hooks=hooks,
    )


def create_immediate(
    *,
    customer_id: str,
    provider_id: str,
    service_id: str | None,
    estimated_arrival_minutes: float,
    duration_minutes: float | None = None,
    destination: LatLng | None = None,
    notes: str | None = None,
    booking_id: str | None = None,
    repository: BookingRepository | None = None,
    clock: Clock | None = None,
    hooks: TrackingHooks | None = None,
    policy: BookingPolicy | None = None,
) -> BookingLifecycle:
    """
    Instant request: auto-confirmed, never passes through pending.
    start = now + dispatch delay; end = start + provider's arrival hint + service duration.
    The arrival hint is a fixed provider attribute, not a live ETA.
    """
    clock = clock or SystemClock()
    policy = policy or BookingPolicy()
    if not provider_id:
        raise InvalidBooking("immediate dispatch needs a provider")
    if estimated_arrival_minutes < 0:
        raise InvalidBooking("estimated_arrival_minutes must be >= 0")
    minutes = policy.default_service_duration_minutes if duration_minutes is None else duration_minutes
    if minutes <= 0:
        raise InvalidBooking("service duration must be positive")

    now = clock.now()
    start = now + timedelta(minutes=policy.dispatch_delay_minutes)
    end = start + timedelta(minutes=estimated_arrival_minutes + minutes)

    booking = Booking(
        id=booking_id or uuid.uuid4().hex,
        customer_id=customer_id,
        provider_id=provider_id,
        service_id=service_id,
        scheduled_start=start,
        scheduled_end=end,
        status=BookingStatus.CONFIRMED,
        created_at=now,
        updated_at=now,
        flow=BookingFlow.IMMEDIATE,
        destination=to_point(destination) if destination is not None else None,
        notes=notes,
        version=1,
    )
    meta = {
        "flow": BookingFlow.IMMEDIATE.value,
        "auto_confirmed": True,
        "estimated_arrival_minutes": estimated_arrival_minutes,
    }
    return _new_lifecycle(booking, meta, repository=repository, clock=clock, hooks=hooks)
