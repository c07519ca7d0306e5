# services/ingress.py
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from booktrack.domain.entities.location import ProviderLocationSample
from booktrack.domain.errors import InvalidSample
from booktrack.runtime.clock import Clock, SystemClock, as_utc
from booktrack.runtime.hooks import NoopHooks, TrackingHooks
from booktrack.services.location_store import LocationStore


class LocationPing(BaseModel):
    """Raw position push from a provider device."""

    model_config = ConfigDict(extra="ignore")
    provider_id: str = Field(min_length=1, validation_alias=AliasChoices("provider_id", "pro_id"))
    lat: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    lng: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)
    heading: float | None = Field(default=None, allow_inf_nan=False)
    speed_kmh: float | None = Field(
        default=None, ge=0.0, allow_inf_nan=False, validation_alias=AliasChoices("speed_kmh", "speed")
    )
    is_online: bool = True
    is_available: bool = True
    observed_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("observed_at", "last_updated")
    )

    @field_validator("heading")
    @classmethod
    def _wrap_heading(cls, v: float | None) -> float | None:
        return None if v is None else v % 360.0

    def to_sample(self, now: datetime) -> ProviderLocationSample:
        return ProviderLocationSample(
            provider_id=self.provider_id,
            lat=self.lat,
            lng=self.lng,
            heading=self.heading,
            speed_kmh=self.speed_kmh,
            is_online=self.is_online,
            is_available=self.is_available,
            observed_at=as_utc(self.observed_at) if self.observed_at else now,
        )


def parse_ping(payload: Mapping[str, Any], *, now: datetime) -> ProviderLocationSample:
    try:
        ping = LocationPing.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(map(str, e["loc"])) for e in exc.errors())
        raise InvalidSample(f"invalid location ping ({fields})") from exc
    return ping.to_sample(now)


class LocationIngress:
    """Device-facing entry point: validate a raw ping and publish it."""

    def __init__(self, store: LocationStore, clock: Clock | None = None, hooks: TrackingHooks | None = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.hooks = hooks or NoopHooks()

    def ingest(self, payload: Mapping[str, Any]) -> bool:
        try:
            sample = parse_ping(payload, now=self.clock.now())
        except InvalidSample as exc:
            self.hooks.sample_rejected(payload.get("provider_id") or payload.get("pro_id"), reason=str(exc))
            raise
        return self.store.publish(sample)
