# services/location_store.py
"""
Authoritative latest-known position per provider.

Streams are sharded by provider id. Each stream has its own re-entrant lock, taken
for publish/subscribe/offline so acceptance and fan-out are atomic per provider.
Subscriber sets are copy-on-write tuples guarded by a second, tiny lock so that
detaching never waits behind an in-flight delivery.
"""

import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from math import isfinite
from typing import Protocol

from booktrack.domain.entities.geography import in_range
from booktrack.domain.entities.location import LocationUpdate, ProviderLocationSample
from booktrack.domain.errors import InvalidSample, ProviderUnreachable, StaleSample
from booktrack.runtime.hooks import NoopHooks, TrackingHooks


class Subscriber(Protocol):
    def deliver(self, update: LocationUpdate) -> None: ...


@dataclass(eq=False)
class _Stream:
    provider_id: str
    history_limit: int
    latest: ProviderLocationSample | None = None
    subscribers: tuple[Subscriber, ...] = ()
    lock: threading.RLock = field(default_factory=threading.RLock)
    subs_lock: threading.Lock = field(default_factory=threading.Lock)
    history: deque = field(init=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.history_limit)  # maxlen=0 keeps nothing

    def snapshot(self) -> LocationUpdate:
        s = self.latest
        return LocationUpdate(self.provider_id, s if s is not None and s.is_online else None)

    def fan_out(self, update: LocationUpdate) -> int:
        subs = self.subscribers
        for sub in subs:
            sub.deliver(update)
        return len(subs)


def validate_sample(sample: ProviderLocationSample) -> None:
    if not isinstance(sample.provider_id, str) or not sample.provider_id:
        raise InvalidSample("provider_id must be a non-empty string")
    if not in_range(sample.lat, sample.lng):
        raise InvalidSample(f"coordinates out of range: ({sample.lat}, {sample.lng})")
    if sample.observed_at is None or sample.observed_at.tzinfo is None:
        raise InvalidSample("observed_at must be a timezone-aware datetime")
    if sample.speed_kmh is not None and (not isfinite(sample.speed_kmh) or sample.speed_kmh < 0):
        raise InvalidSample(f"speed_kmh must be >= 0, got {sample.speed_kmh}")
    if sample.heading is not None and not isfinite(sample.heading):
        raise InvalidSample("heading must be finite")


class LocationStore:
    def __init__(self, hooks: TrackingHooks | None = None, *, history_limit: int = 0):
        self._streams: dict[str, _Stream] = {}
        self._registry_lock = threading.Lock()
        self._history_limit = history_limit
        self._hooks = hooks or NoopHooks()

    # --------------- Helpers -----------------------------

    def _stream(self, provider_id: str) -> _Stream:
        st = self._streams.get(provider_id)
        if st is not None:
            return st
        with self._registry_lock:
            return self._streams.setdefault(provider_id, _Stream(provider_id, self._history_limit))

    @staticmethod
    def _check_fresh(st: _Stream, sample: ProviderLocationSample) -> None:
        if st.latest is not None and sample.observed_at <= st.latest.observed_at:
            raise StaleSample(sample.provider_id)

    # --------------- Ingress -----------------------------

    def publish(self, sample: ProviderLocationSample) -> bool:
        """
        Apply a sample if it is strictly newer than the stored one.
        Returns False for stale/duplicate samples (silently dropped).
        Raises InvalidSample for malformed ones; nobody is notified in either case.
        """
        try:
            validate_sample(sample)
        except InvalidSample as exc:
            self._hooks.sample_rejected(getattr(sample, "provider_id", None), reason=str(exc))
            raise

        st = self._stream(sample.provider_id)
        with st.lock:
            try:
                self._check_fresh(st, sample)
            except StaleSample:
                self._hooks.sample_stale(sample, latest_at=st.latest.observed_at)
                return False
            st.latest = sample
            st.history.append(sample)
            n = st.fan_out(st.snapshot())
        self._hooks.sample_accepted(sample, subscribers=n)
        return True

    def mark_offline(self, provider_id: str) -> None:
        st = self._streams.get(provider_id)
        if st is None:
            return
        with st.lock:
            if st.latest is None or not st.latest.is_online:
                return
            st.latest = st.latest.offline()
            n = st.fan_out(LocationUpdate(provider_id, None))
        self._hooks.provider_offline(provider_id, subscribers=n)

    # --------------- Reads -------------------------------

    def get_latest(self, provider_id: str) -> ProviderLocationSample | None:
        st = self._streams.get(provider_id)
        if st is None:
            return None
        s = st.latest
        return s if s is not None and s.is_online else None

    def current(self, provider_id: str) -> ProviderLocationSample:
        s = self.get_latest(provider_id)
        if s is None:
            raise ProviderUnreachable(provider_id)
        return s

    def history(self, provider_id: str) -> list[ProviderLocationSample]:
        st = self._streams.get(provider_id)
        if st is None:
            return []
        with st.lock:
            return list(st.history)

    def providers(self) -> Iterable[str]:
        return list(self._streams)

    def subscriber_count(self, provider_id: str) -> int:
        st = self._streams.get(provider_id)
        return len(st.subscribers) if st else 0

    # --------------- Subscriber registry -----------------

    def attach(self, provider_id: str, sub: Subscriber) -> None:
        """Register sub and hand it the current state, atomically w.r.t. publishes."""
        st = self._stream(provider_id)
        with st.lock:
            with st.subs_lock:
                st.subscribers = (*st.subscribers, sub)
            sub.deliver(st.snapshot())

    def detach(self, provider_id: str, sub: Subscriber) -> None:
        st = self._streams.get(provider_id)
        if st is None:
            return
        with st.subs_lock:
            st.subscribers = tuple(s for s in st.subscribers if s is not sub)
