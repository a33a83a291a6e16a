"""Geo module - projections and coordinate values."""

from .points import GeoPoint, MercatorPoint, TilePoint, clamp_latitude, wrap_longitude
from .projection import (
    Projection,
    SphericalMercatorProjection,
    WGS84Projection,
    geo_to_mercator,
    geo_to_tile,
    get_projection,
    mercator_to_geo,
    mercator_to_tile,
    tile_to_geo,
    tile_to_mercator,
)

__all__ = [
    'GeoPoint',
    'MercatorPoint',
    'Projection',
    'SphericalMercatorProjection',
    'TilePoint',
    'WGS84Projection',
    'clamp_latitude',
    'geo_to_mercator',
    'geo_to_tile',
    'get_projection',
    'mercator_to_geo',
    'mercator_to_tile',
    'tile_to_geo',
    'tile_to_mercator',
    'wrap_longitude',
]
