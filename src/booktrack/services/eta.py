# services/eta.py
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from booktrack.domain.entities.geography import GeoPoint, LatLng, to_point
from booktrack.domain.entities.location import ProviderLocationSample
from booktrack.domain.geo import distance_km

ARRIVAL_THRESHOLD_KM = 0.1
DEFAULT_SPEED_KMH = 30.0
ARRIVING_MINUTES = 2

TrackingStatus = Literal["unknown", "en_route", "arriving", "arrived", "ended"]


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: float
    eta_minutes: int
    arrived: bool  # edge: true only for the first in-threshold sample
    within_threshold: bool  # level: currently closer than the threshold


def eta_minutes(dist_km: float, speed_kmh: float | None, default_speed_kmh: float) -> int:
    speed = speed_kmh if speed_kmh is not None and speed_kmh > 0 else default_speed_kmh
    # half-up on the minute value; floor of 1 so en route never reads "0 minutes"
    return max(1, math.floor(dist_km / speed * 60 + 0.5))


def eta_text(minutes: int, now: datetime) -> str:
    """Human-readable arrival, e.g. '14:35 (~10 min)'."""
    at = now + timedelta(minutes=minutes)
    return f"{at:%H:%M} (~{minutes} min)"


def status_for(est: EtaEstimate | None) -> TrackingStatus:
    if est is None:
        return "unknown"
    if est.within_threshold:
        return "arrived"
    if est.eta_minutes <= ARRIVING_MINUTES:
        return "arriving"
    return "en_route"


class ETAEngine:
    """
    Distance/ETA for a moving provider against a fixed destination.
    Arrival is edge-triggered per (provider, destination) for the engine's lifetime,
    so repeated close-range samples never re-fire it. One engine per dispatch session.
    """

    def __init__(
        self,
        *,
        arrival_threshold_km: float = ARRIVAL_THRESHOLD_KM,
        default_speed_kmh: float = DEFAULT_SPEED_KMH,
        destination: LatLng | None = None,
    ):
        self.arrival_threshold_km = arrival_threshold_km
        self.default_speed_kmh = default_speed_kmh
        self.destination: GeoPoint | None = to_point(destination) if destination else None
        self._fired: set[tuple[str, GeoPoint]] = set()
        self._lock = threading.Lock()

    def recompute(
        self, sample: ProviderLocationSample, destination: LatLng | None = None
    ) -> EtaEstimate:
        dest = to_point(destination) if destination is not None else self.destination
        if dest is None:
            raise ValueError("no destination given and none primed")
        d = distance_km(sample, dest)
        minutes = eta_minutes(d, sample.speed_kmh, self.default_speed_kmh)
        within = d < self.arrival_threshold_km
        arrived = False
        if within:
            key = (sample.provider_id, dest)
            with self._lock:
                if key not in self._fired:
                    self._fired.add(key)
                    arrived = True
        return EtaEstimate(distance_km=d, eta_minutes=minutes, arrived=arrived, within_threshold=within)

    def has_arrived(self, provider_id: str, destination: LatLng | None = None) -> bool:
        dest = to_point(destination) if destination is not None else self.destination
        with self._lock:
            return (provider_id, dest) in self._fired

    def reset(self) -> None:
        with self._lock:
            self._fired.clear()
