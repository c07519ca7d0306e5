# services/location_channel.py
import itertools
import threading
from collections import deque
from collections.abc import Callable
from typing import Protocol

from booktrack.domain.entities.location import LocationUpdate, ProviderLocationSample
from booktrack.runtime.hooks import NoopHooks, TrackingHooks
from booktrack.services.location_store import LocationStore

Handler = Callable[[LocationUpdate], None]

_ids = itertools.count(1)


class Delivery(Protocol):
    def push(self, handle: "SubscriptionHandle", update: LocationUpdate) -> None: ...
    def close(self) -> None: ...


class SyncDelivery:
    """Invoke the handler directly in the publishing thread."""

    def push(self, handle, update):
        handle._invoke(update)

    def close(self):
        pass


# Per-subscriber worker; never blocks the publisher, drops oldest on overflow
class QueuedDelivery:
    def __init__(self, maxsize: int = 64, hooks: TrackingHooks | None = None):
        self.maxsize = maxsize
        self.dropped = 0
        self._q: deque = deque()
        self._cv = threading.Condition()
        self._stop = False
        self._busy = False
        self._t: threading.Thread | None = None
        self._hooks = hooks or NoopHooks()

    def push(self, handle, update):
        with self._cv:
            if self._stop:
                return
            if len(self._q) >= self.maxsize:
                self._q.popleft()
                self.dropped += 1
                self._hooks.delivery_dropped(update.provider_id, dropped=self.dropped)
            self._q.append((handle, update))
            if self._t is None:
                self._t = threading.Thread(target=self._run, daemon=True)
                self._t.start()
            self._cv.notify()

    def _run(self):
        while True:
            with self._cv:
                while not self._q and not self._stop:
                    self._cv.wait()
                if self._stop:
                    return
                handle, update = self._q.popleft()
                self._busy = True
            try:
                handle._invoke(update)
            finally:
                with self._cv:
                    self._busy = False
                    self._cv.notify_all()

    def drain(self, timeout: float = 1.0) -> bool:
        """Wait until everything queued so far has been handled."""
        with self._cv:
            return self._cv.wait_for(lambda: self._stop or (not self._q and not self._busy), timeout)

    def close(self):
        # flag only; an in-flight handler finishes on its own thread
        with self._cv:
            self._stop = True
            self._q.clear()
            self._cv.notify_all()


class SubscriptionHandle:
    def __init__(self, channel: "LocationChannel", provider_id: str, handler: Handler, delivery):
        self.id = next(_ids)
        self.provider_id = provider_id
        self._channel = channel
        self._handler = handler
        self._delivery = delivery
        self._active = True
        self._state_lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def delivery(self):
        return self._delivery

    def deliver(self, update: LocationUpdate) -> None:
        if self._active:
            self._delivery.push(self, update)

    def _invoke(self, update: LocationUpdate) -> None:
        if not self._active:
            return
        try:
            self._handler(update)
        except Exception as exc:
            # one bad subscriber must not break the publisher or its siblings
            self._channel.hooks.handler_error(self.provider_id, exc=exc)

    def _deactivate(self) -> bool:
        with self._state_lock:
            was, self._active = self._active, False
            return was

    def unsubscribe(self) -> None:
        self._channel.unsubscribe(self)

    def __repr__(self) -> str:
        state = "active" if self._active else "closed"
        return f"<SubscriptionHandle #{self.id} provider={self.provider_id} {state}>"


class LocationChannel:
    """Publish/subscribe fan-out of provider positions, one stream per provider."""

    def __init__(
        self,
        store: LocationStore,
        *,
        delivery_factory: Callable[[], Delivery] | None = None,
        hooks: TrackingHooks | None = None,
    ):
        self.store = store
        self.hooks = hooks or NoopHooks()
        self._delivery_factory = delivery_factory or SyncDelivery

    def publish(self, sample: ProviderLocationSample) -> bool:
        return self.store.publish(sample)

    def subscribe(
        self, provider_id: str, handler: Handler, *, delivery: Delivery | None = None
    ) -> SubscriptionHandle:
        """
        Register handler for provider_id. The current state is delivered right away:
        the latest sample if the provider is online, otherwise an explicit unknown update.
        """
        h = SubscriptionHandle(self, provider_id, handler, delivery or self._delivery_factory())
        self.store.attach(provider_id, h)
        return h

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Idempotent. Stops future deliveries without waiting for an in-flight one."""
        if not handle._deactivate():
            return
        self.store.detach(handle.provider_id, handle)
        handle.delivery.close()
