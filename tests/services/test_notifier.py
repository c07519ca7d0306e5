# tests/services/test_notifier.py
import threading

from booktrack.domain.errors import NotifierFailure
from booktrack.services.notifier import AsyncNotifier, MemoryNotifier, notify_safely


class Broken:
    def notify(self, booking_id, event_type, payload):
        raise ConnectionError("sms gateway down")


class FailureLog:
    def __init__(self):
        self.failures = []

    def notify_failed(self, booking_id, *, event_type, exc):
        self.failures.append((booking_id, event_type, exc))


def test_memory_notifier_records_copies():
    n = MemoryNotifier()
    payload = {"eta_minutes": 10}
    n.notify("b1", "booking_confirmed", payload)
    payload["eta_minutes"] = 99
    n.notify("b1", "provider_arrived", {})

    assert n.of_type("booking_confirmed") == [("b1", "booking_confirmed", {"eta_minutes": 10})]
    assert len(n.sent) == 2


def test_notify_safely_wraps_and_reports_failures():
    hooks = FailureLog()
    assert not notify_safely(Broken(), "b1", "booking_confirmed", {}, hooks=hooks)
    (bid, etype, exc) = hooks.failures[0]
    assert (bid, etype) == ("b1", "booking_confirmed")
    assert isinstance(exc, NotifierFailure)
    assert isinstance(exc.cause, ConnectionError)

    assert notify_safely(MemoryNotifier(), "b1", "booking_confirmed", {}, hooks=hooks)


def test_async_notifier_delivers_in_background():
    inner = MemoryNotifier()
    n = AsyncNotifier(inner, maxsize=10)
    for i in range(5):
        n.notify(f"b{i}", "booking_confirmed", {})
    n.flush()
    n.stop()
    assert [b for b, _, _ in inner.sent] == [f"b{i}" for i in range(5)]


def test_async_notifier_drops_when_full_without_blocking():
    gate = threading.Event()

    class Slow:
        def notify(self, booking_id, event_type, payload):
            gate.wait(2.0)

    hooks = FailureLog()
    n = AsyncNotifier(Slow(), maxsize=1, hooks=hooks)
    for i in range(10):
        n.notify(f"b{i}", "booking_confirmed", {})

    assert n.dropped >= 8
    assert len(hooks.failures) == n.dropped
    gate.set()
    n.flush()
    n.stop()


def test_async_notifier_survives_inner_failures():
    hooks = FailureLog()
    n = AsyncNotifier(Broken(), hooks=hooks)
    n.notify("b1", "provider_arrived", {})
    n.flush()
    n.stop()
    assert hooks.failures[0][:2] == ("b1", "provider_arrived")
