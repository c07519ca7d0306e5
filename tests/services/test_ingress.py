# tests/services/test_ingress.py
from datetime import UTC, datetime

import pytest

from booktrack.domain.errors import InvalidSample
from booktrack.runtime.clock import ManualClock
from booktrack.services.ingress import LocationIngress, parse_ping
from booktrack.services.location_store import LocationStore


class RejectLog:
    def __init__(self):
        self.rejected = []

    def sample_rejected(self, provider_id, *, reason):
        self.rejected.append((provider_id, reason))

    def __getattr__(self, name):
        return lambda *a, **k: None


def test_parse_accepts_device_aliases_and_wraps_heading():
    now = datetime(2025, 1, 1, 8, tzinfo=UTC)
    s = parse_ping(
        {"pro_id": "p9", "lat": 32.08, "lng": 34.78, "speed": 42.0, "heading": 370.0, "extra": 1},
        now=now,
    )
    assert s.provider_id == "p9"
    assert s.speed_kmh == 42.0
    assert s.heading == pytest.approx(10.0)
    assert s.observed_at == now
    assert s.is_online and s.is_available


def test_parse_keeps_device_timestamp_as_utc():
    s = parse_ping(
        {"provider_id": "p1", "lat": 0, "lng": 0, "last_updated": "2025-01-01T07:59:30"},
        now=datetime(2025, 1, 1, 8, tzinfo=UTC),
    )
    assert s.observed_at == datetime(2025, 1, 1, 7, 59, 30, tzinfo=UTC)


@pytest.mark.parametrize(
    "payload",
    [
        {"provider_id": "p1", "lat": 91, "lng": 0},
        {"provider_id": "p1", "lat": 0, "lng": -200},
        {"provider_id": "p1", "lat": 0, "lng": 0, "speed": -1},
        {"provider_id": "", "lat": 0, "lng": 0},
        {"lat": 0, "lng": 0},
        {"provider_id": "p1", "lat": "north", "lng": 0},
    ],
)
def test_parse_rejects_bad_pings(payload):
    with pytest.raises(InvalidSample):
        parse_ping(payload, now=datetime(2025, 1, 1, tzinfo=UTC))


def test_ingest_publishes_and_reports_rejects():
    clock = ManualClock.utc(2025, 1, 1, 8)
    hooks = RejectLog()
    store = LocationStore()
    ing = LocationIngress(store, clock, hooks)

    assert ing.ingest({"provider_id": "p1", "lat": 32.0, "lng": 34.0})
    assert not ing.ingest({"provider_id": "p1", "lat": 32.1, "lng": 34.0})  # same stamp, stale
    clock.advance(5)
    assert ing.ingest({"provider_id": "p1", "lat": 32.2, "lng": 34.0})
    assert store.current("p1").lat == 32.2

    with pytest.raises(InvalidSample):
        ing.ingest({"provider_id": "p1", "lat": 99, "lng": 0})
    assert hooks.rejected[0][0] == "p1"
