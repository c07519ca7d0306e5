# services/notifier.py
import logging
import queue
import threading
from typing import Any, Protocol, runtime_checkable

from booktrack.domain.errors import NotifierFailure
from booktrack.runtime.hooks import NoopHooks, TrackingHooks

log = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Outbound message delivery (SMS etc.). Fire-and-forget from the core's view."""

    def notify(self, booking_id: str, event_type: str, payload: dict[str, Any]) -> None: ...


class MemoryNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, booking_id, event_type, payload):
        with self._lock:
            self.sent.append((booking_id, event_type, dict(payload)))

    def of_type(self, event_type: str) -> list[tuple[str, str, dict[str, Any]]]:
        with self._lock:
            return [n for n in self.sent if n[1] == event_type]


class LoggingNotifier:
    """Stands in for the SMS gateway: writes the message to the log."""

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or log

    def notify(self, booking_id, event_type, payload):
        self.log.info(
            "notify", extra={"extra": {"booking_id": booking_id, "event_type": event_type, **payload}}
        )


def notify_safely(
    notifier: Notifier, booking_id: str, event_type: str, payload: dict[str, Any], *, hooks=None
) -> bool:
    """Call notifier; any failure is reported through hooks and swallowed."""
    try:
        notifier.notify(booking_id, event_type, payload)
        return True
    except Exception as exc:
        (hooks or NoopHooks()).notify_failed(
            booking_id, event_type=event_type, exc=NotifierFailure(booking_id, event_type, exc)
        )
        return False


# Non-blocking wrapper: queue + daemon worker, drops on overflow
class AsyncNotifier:
    def __init__(self, inner: Notifier, maxsize: int = 1000, hooks: TrackingHooks | None = None):
        self.inner, self.q = inner, queue.Queue(maxsize=maxsize)
        self.hooks = hooks or NoopHooks()
        self.dropped = 0
        self._stop = threading.Event()
        self._t = threading.Thread(target=self._run, daemon=True)
        self._t.start()

    def notify(self, booking_id, event_type, payload):
        try:
            self.q.put_nowait((booking_id, event_type, payload))
        except queue.Full:
            self.dropped += 1  # never block a state transition
            self.hooks.notify_failed(
                booking_id,
                event_type=event_type,
                exc=NotifierFailure(booking_id, event_type, RuntimeError("notifier queue full")),
            )

    def _run(self):
        while not self._stop.is_set():
            try:
                item = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                notify_safely(self.inner, *item, hooks=self.hooks)
            finally:
                self.q.task_done()

    def flush(self) -> None:
        self.q.join()

    def stop(self):
        self._stop.set()
        self._t.join(timeout=1.0)
