# sim/feed.py
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any
from zlib import crc32

import numpy as np

from booktrack.config.models import FeedModel
from booktrack.domain.entities.geography import GeoPoint, LatLng, to_point
from booktrack.domain.geo import bearing_deg, destination_point, distance_km


def feed_rng(seed: int, provider_id: str, *, run: str = "local") -> np.random.Generator:
    """Generator for one provider's feed, seeded from (seed, run, provider) so feeds never share draws."""
    ss = np.random.SeedSequence([seed & 0xFFFFFFFF, crc32(run.encode()), crc32(provider_id.encode())])
    return np.random.default_rng(ss)


class ProviderFeed:
    """
    Synthetic device pings for one provider driving straight to a destination.

    Yields raw ingress payloads (the shape LocationIngress accepts) with explicit
    observed_at stamps. Reported speed and position can be jittered, and pings
    can be duplicated or delivered out of order to exercise the store's
    monotonic acceptance.
    """

    def __init__(
        self,
        provider_id: str,
        origin: LatLng,
        destination: LatLng,
        *,
        cfg: FeedModel,
        start: datetime,
        rng: np.random.Generator | None = None,
    ):
        self.provider_id = provider_id
        self.position: GeoPoint = to_point(origin)
        self.destination: GeoPoint = to_point(destination)
        self.cfg = cfg
        self.rng = rng if rng is not None else feed_rng(cfg.seed, provider_id)
        self.t = start
        self.arrived = False

    # --------------- Helpers -----------------------------

    def _speed(self) -> float:
        jitter = self.rng.normal(0.0, self.cfg.speed_jitter) if self.cfg.speed_jitter else 0.0
        return max(1.0, self.cfg.speed_kmh * (1.0 + jitter))

    def _reported(self, p: GeoPoint) -> GeoPoint:
        if not self.cfg.position_jitter_m:
            return p
        off_km = abs(self.rng.normal(0.0, self.cfg.position_jitter_m / 1000.0))
        return destination_point(p, float(self.rng.uniform(0.0, 360.0)), off_km)

    def _payload(self, speed: float) -> dict[str, Any]:
        p = self._reported(self.position)
        return {
            "provider_id": self.provider_id,
            "lat": p.lat,
            "lng": p.lng,
            "heading": bearing_deg(self.position, self.destination) if not self.arrived else None,
            "speed": 0.0 if self.arrived else speed,
            "observed_at": self.t.isoformat(),
        }

    # --------------------------------------------------------

    def step(self) -> dict[str, Any]:
        """Advance one interval along the straight line and return the ping."""
        self.t += timedelta(seconds=self.cfg.interval_s)
        speed = self._speed()
        remaining = distance_km(self.position, self.destination)
        hop = speed * self.cfg.interval_s / 3600.0
        if hop >= remaining:
            self.position = self.destination
            self.arrived = True
        else:
            self.position = destination_point(
                self.position, bearing_deg(self.position, self.destination), hop
            )
        return self._payload(speed)

    def pings(self, max_steps: int = 10_000) -> Iterator[dict[str, Any]]:
        """All pings until arrival, in delivery order (duplicates and swaps included)."""
        held: dict[str, Any] | None = None
        for _ in range(max_steps):
            if self.arrived:
                break
            ping = self.step()
            out = [ping]
            if self.cfg.duplicate_p and self.rng.random() < self.cfg.duplicate_p:
                out.append(dict(ping))
            if held is not None:
                out.append(held)  # older ping lands after a newer one
                held = None
            elif not self.arrived and self.cfg.reorder_p and self.rng.random() < self.cfg.reorder_p:
                held, out = out[0], out[1:]
            yield from out
        if held is not None:
            yield held
