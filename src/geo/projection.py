"""Conversions between geographic, Mercator and tile coordinates.

The default projection is the WGS84 ellipsoid Mercator used by the tile
providers. Its inverse uses a fixed four-term series for the conformal
latitude instead of an iterative solver; the coefficients must stay as they
are so that forward and inverse transforms line up with stored tile
alignment.

All functions are pure and run on per-frame paths, so degenerate input is
clamped instead of rejected.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

from geo.points import GeoPoint, MercatorPoint, TilePoint, clamp_latitude, wrap_longitude
from shared.constants import (
    MERCATOR_MAX_LAT,
    TILE_SIZE,
    WGS84_A,
    WGS84_BASE_ZOOM,
    WGS84_C1,
    WGS84_C2,
    WGS84_C3,
    WGS84_C4,
    WGS84_HALF_WORLD_M,
    WGS84_K,
    WGS84_TILE_SCALE,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
    ProjectionKind,
)

_PI_4 = math.pi / 4


def _isometric(lat_rad: float) -> float:
    """Ellipsoidal isometric factor z, so that y = a * ln(z)."""
    return math.tan(_PI_4 + lat_rad / 2) / math.pow(
        math.tan(_PI_4 + math.asin(WGS84_K * math.sin(lat_rad)) / 2), WGS84_K
    )


def _inverse_latitude(my: float) -> float:
    """Latitude (rad) from the Mercator northing using the fixed series."""
    g = math.pi / 2 - 2 * math.atan(1 / math.exp(my / WGS84_A))
    return (
        g
        + WGS84_C1 * math.sin(2 * g)
        + WGS84_C2 * math.sin(4 * g)
        + WGS84_C3 * math.sin(6 * g)
        + WGS84_C4 * math.sin(8 * g)
    )


def geo_to_tile(lon: float, lat: float, zoom: int) -> tuple[float, float]:
    """Geographic degrees -> fractional tile coordinates at ``zoom``."""
    lat = clamp_latitude(lat, MERCATOR_MAX_LAT)
    lon = wrap_longitude(lon)
    r_lon = math.radians(lon)
    r_lat = math.radians(lat)

    z = _isometric(r_lat)
    z1 = math.pow(2, WGS84_BASE_ZOOM - zoom)

    tile_x = (WGS84_HALF_WORLD_M + WGS84_A * r_lon) * WGS84_TILE_SCALE / z1
    tile_y = (WGS84_HALF_WORLD_M - WGS84_A * math.log(z)) * WGS84_TILE_SCALE / z1
    return tile_x, tile_y


def geo_to_mercator(lon: float, lat: float) -> tuple[float, float]:
    """Geographic degrees -> Mercator meters (no tiling)."""
    if math.isnan(lon):
        lon = 0.0
    lat = clamp_latitude(lat, WORLD_LAT_MAX_DEG - 1e-9)
    r_lon = math.radians(lon)
    r_lat = math.radians(lat)
    return WGS84_A * r_lon, WGS84_A * math.log(_isometric(r_lat))


def mercator_to_geo(mx: float, my: float) -> tuple[float, float]:
    """Mercator meters -> geographic degrees."""
    lat = math.degrees(_inverse_latitude(my))
    lon = math.degrees(mx / WGS84_A)
    return lon, lat


def tile_to_geo(tile_x: float, tile_y: float, zoom: int) -> tuple[float, float]:
    """Fractional tile coordinates at ``zoom`` -> geographic degrees."""
    scale = math.pow(2, WGS84_BASE_ZOOM - zoom) / WGS84_TILE_SCALE
    mx = tile_x * scale - WGS84_HALF_WORLD_M
    my = WGS84_HALF_WORLD_M - tile_y * scale
    return mercator_to_geo(mx, my)


def mercator_to_tile(mx: float, my: float, zoom: int) -> tuple[float, float]:
    """Mercator meters -> fractional tile coordinates at ``zoom``."""
    z1 = math.pow(2, WGS84_BASE_ZOOM - zoom)
    return (
        (WGS84_HALF_WORLD_M + mx) * WGS84_TILE_SCALE / z1,
        (WGS84_HALF_WORLD_M - my) * WGS84_TILE_SCALE / z1,
    )


def tile_to_mercator(tile_x: float, tile_y: float, zoom: int) -> tuple[float, float]:
    """Fractional tile coordinates at ``zoom`` -> Mercator meters."""
    scale = math.pow(2, WGS84_BASE_ZOOM - zoom) / WGS84_TILE_SCALE
    return tile_x * scale - WGS84_HALF_WORLD_M, WGS84_HALF_WORLD_M - tile_y * scale


class Projection(ABC):
    """Projection used by a map; converts locations to tiles and back."""

    kind: ProjectionKind
    max_latitude: float = MERCATOR_MAX_LAT

    @abstractmethod
    def geo_to_tile(self, lon: float, lat: float, zoom: int) -> tuple[float, float]: ...

    @abstractmethod
    def tile_to_geo(self, tile_x: float, tile_y: float, zoom: int) -> tuple[float, float]: ...

    @abstractmethod
    def geo_to_mercator(self, lon: float, lat: float) -> tuple[float, float]: ...

    @abstractmethod
    def mercator_to_geo(self, mx: float, my: float) -> tuple[float, float]: ...

    def location_to_tile(self, point: GeoPoint, zoom: int) -> TilePoint:
        tx, ty = self.geo_to_tile(point.lon, point.lat, zoom)
        return TilePoint(tx, ty, zoom)

    def tile_to_location(self, tile: TilePoint) -> GeoPoint:
        return GeoPoint(*self.tile_to_geo(tile.x, tile.y, tile.zoom))

    def location_to_mercator(self, point: GeoPoint) -> MercatorPoint:
        return MercatorPoint(*self.geo_to_mercator(point.lon, point.lat))

    def mercator_to_location(self, point: MercatorPoint) -> GeoPoint:
        return GeoPoint(*self.mercator_to_geo(point.x, point.y))

    def tile_bounds(self, x: int, y: int, zoom: int) -> tuple[GeoPoint, GeoPoint]:
        """Top-left and bottom-right corners of tile (x, y)."""
        top_left = GeoPoint(*self.tile_to_geo(x, y, zoom))
        bottom_right = GeoPoint(*self.tile_to_geo(x + 1, y + 1, zoom))
        return top_left, bottom_right


class WGS84Projection(Projection):
    """WGS84 ellipsoid Mercator."""

    kind = ProjectionKind.WGS84

    def geo_to_tile(self, lon: float, lat: float, zoom: int) -> tuple[float, float]:
        return geo_to_tile(lon, lat, zoom)

    def tile_to_geo(self, tile_x: float, tile_y: float, zoom: int) -> tuple[float, float]:
        return tile_to_geo(tile_x, tile_y, zoom)

    def geo_to_mercator(self, lon: float, lat: float) -> tuple[float, float]:
        return geo_to_mercator(lon, lat)

    def mercator_to_geo(self, mx: float, my: float) -> tuple[float, float]:
        return mercator_to_geo(mx, my)


class SphericalMercatorProjection(Projection):
    """Spherical (Web) Mercator; tile coordinates are clamped to the map."""

    kind = ProjectionKind.SPHERICAL_MERCATOR

    def geo_to_tile(self, lon: float, lat: float, zoom: int) -> tuple[float, float]:
        lat = clamp_latitude(lat, self.max_latitude)
        lon = 0.0 if math.isnan(lon) else lon
        sy = math.sin(math.radians(lat))
        u = (lon + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG
        v = 0.5 - math.log((1 + sy) / (1 - sy)) / (4 * math.pi)
        map_size = TILE_SIZE << zoom
        px = min(max(u * map_size, 0.0), map_size)
        py = min(max(v * map_size, 0.0), map_size)
        return px / TILE_SIZE, py / TILE_SIZE

    def tile_to_geo(self, tile_x: float, tile_y: float, zoom: int) -> tuple[float, float]:
        map_size = float(TILE_SIZE << zoom)
        px = (tile_x * TILE_SIZE) % map_size
        py = min(max(tile_y * TILE_SIZE, 0.0), map_size)
        lon = WORLD_LNG_SPAN_DEG * (px / map_size - 0.5)
        lat = (
            WORLD_LAT_MAX_DEG
            - WORLD_LNG_SPAN_DEG * math.atan(math.exp((py / map_size - 0.5) * 2 * math.pi)) / math.pi
        )
        return lon, lat

    def geo_to_mercator(self, lon: float, lat: float) -> tuple[float, float]:
        lat = clamp_latitude(lat, self.max_latitude)
        lon = 0.0 if math.isnan(lon) else lon
        mx = WGS84_A * math.radians(lon)
        my = WGS84_A * math.log(math.tan(_PI_4 + math.radians(lat) / 2))
        return mx, my

    def mercator_to_geo(self, mx: float, my: float) -> tuple[float, float]:
        lon = math.degrees(mx / WGS84_A)
        lat = math.degrees(2 * math.atan(math.exp(my / WGS84_A)) - math.pi / 2)
        return lon, lat


def get_projection(kind: ProjectionKind | str) -> Projection:
    kind = ProjectionKind(kind)
    if kind is ProjectionKind.SPHERICAL_MERCATOR:
        return SphericalMercatorProjection()
    return WGS84Projection()
