# domain/entities/geography.py
from dataclasses import dataclass
from math import isfinite


def in_range(lat: float, lng: float) -> bool:
    return (
        isfinite(lat) and isfinite(lng) and -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
    )


@dataclass(frozen=True)
class GeoPoint:
    lat: float  # degrees, WGS84
    lng: float

    def __post_init__(self):
        if not in_range(self.lat, self.lng):
            raise ValueError(f"coordinates out of range: ({self.lat}, {self.lng})")

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


LatLng = GeoPoint | tuple[float, float]


def to_point(p) -> GeoPoint:
    """Accept a GeoPoint, a (lat, lng) pair, or anything with .lat/.lng."""
    if isinstance(p, GeoPoint):
        return p
    if hasattr(p, "lat") and hasattr(p, "lng"):
        return GeoPoint(float(p.lat), float(p.lng))
    return GeoPoint(float(p[0]), float(p[1]))
