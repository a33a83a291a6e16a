"""Immutable coordinate values used across the tile engine."""

from __future__ import annotations

import math
from dataclasses import dataclass

from shared.constants import (
    MERCATOR_MAX_LAT,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
)


def wrap_longitude(lon: float) -> float:
    """Wrap longitude to [-180, 180). NaN becomes 0."""
    if math.isnan(lon) or math.isinf(lon):
        return 0.0
    wrapped = (lon + WORLD_LNG_HALF_SPAN_DEG) % WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    # float modulo can land exactly on the open upper bound
    if wrapped >= WORLD_LNG_HALF_SPAN_DEG:
        wrapped -= WORLD_LNG_SPAN_DEG
    return wrapped


def clamp_latitude(lat: float, max_lat: float = MERCATOR_MAX_LAT) -> float:
    """Clamp latitude to [-max_lat, max_lat]. NaN becomes 0."""
    if math.isnan(lat):
        return 0.0
    return min(max(lat, -max_lat), max_lat)


@dataclass(frozen=True)
class GeoPoint:
    """Geographic location in degrees."""

    lon: float
    lat: float

    @classmethod
    def normalized(cls, lon: float, lat: float, max_lat: float = MERCATOR_MAX_LAT) -> GeoPoint:
        return cls(wrap_longitude(lon), clamp_latitude(lat, max_lat))

    @staticmethod
    def lerp(a: GeoPoint, b: GeoPoint, t: float) -> GeoPoint:
        return GeoPoint(a.lon + (b.lon - a.lon) * t, a.lat + (b.lat - a.lat) * t)

    def as_tuple(self) -> tuple[float, float]:
        return self.lon, self.lat


@dataclass(frozen=True)
class MercatorPoint:
    """Projected planar coordinate in meters."""

    x: float
    y: float

    def offset(self, dx: float, dy: float) -> MercatorPoint:
        return MercatorPoint(self.x + dx, self.y + dy)

    def distance_to(self, other: MercatorPoint) -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def as_tuple(self) -> tuple[float, float]:
        return self.x, self.y


@dataclass(frozen=True)
class TilePoint:
    """Fractional tile coordinate at a zoom level."""

    x: float
    y: float
    zoom: int

    def floor(self) -> tuple[int, int]:
        return math.floor(self.x), math.floor(self.y)

    def as_tuple(self) -> tuple[float, float]:
        return self.x, self.y
