# tests/domain/test_geo.py
import math

import numpy as np
import pytest

from booktrack.domain.entities.geography import GeoPoint, to_point
from booktrack.domain.geo import EARTH_RADIUS_KM, bearing_deg, destination_point, distance_km


def _random_points(rng, n):
    lats = rng.uniform(-89.0, 89.0, n)
    lngs = rng.uniform(-179.0, 179.0, n)
    return [GeoPoint(float(a), float(b)) for a, b in zip(lats, lngs)]


def test_distance_is_zero_for_same_point():
    p = (32.0853, 34.7818)
    assert distance_km(p, p) == 0.0


def test_known_city_pair():
    london, paris = (51.5074, -0.1278), (48.8566, 2.3522)
    assert distance_km(london, paris) == pytest.approx(343.5, abs=1.0)


def test_distance_symmetric_and_triangle_inequality():
    rng = np.random.default_rng(42)
    pts = _random_points(rng, 60)
    for a, b, c in zip(pts[0::3], pts[1::3], pts[2::3]):
        ab, ba = distance_km(a, b), distance_km(b, a)
        assert ab == pytest.approx(ba, abs=1e-9)
        assert distance_km(a, c) <= ab + distance_km(b, c) + 1e-6


def test_antipodal_points_do_not_blow_up():
    d = distance_km((0.0, 0.0), (0.0, 180.0))
    assert d == pytest.approx(math.pi * EARTH_RADIUS_KM, rel=1e-9)


def test_destination_point_lands_at_requested_distance_and_bearing():
    origin = GeoPoint(32.0853, 34.7818)
    for bearing in (10.0, 90.0, 181.0, 275.0):
        p = destination_point(origin, bearing, 5.0)
        assert distance_km(origin, p) == pytest.approx(5.0, abs=1e-6)
        assert bearing_deg(origin, p) == pytest.approx(bearing, abs=1e-6)


def test_bearing_cardinal_directions():
    assert bearing_deg((0.0, 0.0), (1.0, 0.0)) == pytest.approx(0.0, abs=1e-9)
    assert bearing_deg((0.0, 0.0), (0.0, 1.0)) == pytest.approx(90.0, abs=1e-9)
    assert bearing_deg((0.0, 0.0), (-1.0, 0.0)) == pytest.approx(180.0, abs=1e-9)


def test_to_point_accepts_pairs_and_objects():
    class Row:
        lat, lng = 1.5, 2.5

    assert to_point((1.5, 2.5)) == GeoPoint(1.5, 2.5)
    assert to_point(Row()) == GeoPoint(1.5, 2.5)


@pytest.mark.parametrize("lat,lng", [(91.0, 0.0), (0.0, -181.0), (float("nan"), 0.0)])
def test_geopoint_rejects_out_of_range(lat, lng):
    with pytest.raises(ValueError):
        GeoPoint(lat, lng)
