# domain/entities/location.py
from dataclasses import dataclass, replace
from datetime import datetime

from booktrack.domain.entities.geography import GeoPoint


@dataclass(frozen=True)
class ProviderLocationSample:
    provider_id: str
    lat: float
    lng: float
    observed_at: datetime  # tz-aware
    heading: float | None = None  # degrees clockwise from north
    speed_kmh: float | None = None
    is_online: bool = True
    is_available: bool = True

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)

    def offline(self) -> "ProviderLocationSample":
        return replace(self, is_online=False)


@dataclass(frozen=True)
class LocationUpdate:
    """What a channel subscriber receives. sample=None means the provider is unknown/offline."""

    provider_id: str
    sample: ProviderLocationSample | None

    @property
    def known(self) -> bool:
        return self.sample is not None
