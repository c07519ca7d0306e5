# domain/geo.py
"""Great-circle helpers on a spherical Earth. Inputs are (lat, lng) in degrees."""

from math import asin, atan2, cos, degrees, radians, sin, sqrt

from booktrack.domain.entities.geography import GeoPoint, LatLng, to_point

EARTH_RADIUS_KM = 6371.0


def distance_km(a: LatLng, b: LatLng) -> float:
    """Haversine distance in kilometers."""
    p, q = to_point(a), to_point(b)
    lat1, lng1, lat2, lng2 = map(radians, (p.lat, p.lng, q.lat, q.lng))
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # float error can push h a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, h)))


def bearing_deg(a: LatLng, b: LatLng) -> float:
    """Initial bearing from a to b, degrees clockwise from north in [0, 360)."""
    p, q = to_point(a), to_point(b)
    lat1, lat2 = radians(p.lat), radians(q.lat)
    dlng = radians(q.lng - p.lng)
    x = sin(dlng) * cos(lat2)
    y = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlng)
    return (degrees(atan2(x, y)) + 360.0) % 360.0


def destination_point(origin: LatLng, bearing: float, dist_km: float) -> GeoPoint:
    """Point reached from origin after dist_km along the given initial bearing."""
    p = to_point(origin)
    lat1, lng1 = radians(p.lat), radians(p.lng)
    theta = radians(bearing)
    delta = dist_km / EARTH_RADIUS_KM
    lat2 = asin(sin(lat1) * cos(delta) + cos(lat1) * sin(delta) * cos(theta))
    lng2 = lng1 + atan2(
        sin(theta) * sin(delta) * cos(lat1), cos(delta) - sin(lat1) * sin(lat2)
    )
    lng = (degrees(lng2) + 540.0) % 360.0 - 180.0
    return GeoPoint(degrees(lat2), lng)
