"""Tests for geo.points."""

import math

import pytest

from geo.points import GeoPoint, MercatorPoint, TilePoint, clamp_latitude, wrap_longitude


@pytest.mark.parametrize(
    ('lon', 'expected'),
    [(0.0, 0.0), (180.0, -180.0), (-180.0, -180.0), (190.0, -170.0), (-190.0, 170.0), (540.0, -180.0)],
)
def test_wrap_longitude(lon, expected):
    assert wrap_longitude(lon) == pytest.approx(expected)


def test_wrap_longitude_non_finite():
    assert wrap_longitude(math.nan) == 0.0
    assert wrap_longitude(math.inf) == 0.0


def test_clamp_latitude():
    assert clamp_latitude(90.0) == 85.0
    assert clamp_latitude(-90.0) == -85.0
    assert clamp_latitude(45.0) == 45.0
    assert clamp_latitude(math.nan) == 0.0
    assert clamp_latitude(89.0, max_lat=89.5) == 89.0


def test_geopoint_normalized_and_lerp():
    p = GeoPoint.normalized(200.0, 95.0)
    assert p.lon == pytest.approx(-160.0)
    assert p.lat == 85.0

    mid = GeoPoint.lerp(GeoPoint(0.0, 0.0), GeoPoint(10.0, 20.0), 0.5)
    assert mid.as_tuple() == (5.0, 10.0)


def test_mercator_point_offset_and_distance():
    a = MercatorPoint(0.0, 0.0)
    b = a.offset(3.0, 4.0)
    assert b.as_tuple() == (3.0, 4.0)
    assert a.distance_to(b) == 5.0


def test_tile_point_floor_handles_negative():
    assert TilePoint(2.7, 3.1, 4).floor() == (2, 3)
    assert TilePoint(-0.5, 0.5, 4).floor() == (-1, 0)


def test_points_are_frozen():
    p = GeoPoint(1.0, 2.0)
    with pytest.raises(AttributeError):
        p.lon = 3.0  # type: ignore[misc]
