"""Tile engine core.

This module provides:
- TileKey/Tile: tile identity and lifecycle
- TileCache: in-memory tiles with LRU eviction and in-flight dedup
- FetchPipeline/FetchExecutor: async download and decode
- DiskTileCache/CacheWriter: optional SQLite store of raw tile bytes
"""

from tiles.cache import CacheStats, ReconcileResult, TileCache
from tiles.content import RasterContent, VectorContent, VectorFeature, VectorLayer
from tiles.coverage import TilePlacement, compute_needed_keys, iter_placements
from tiles.disk_cache import DiskCacheStats, DiskTileCache
from tiles.errors import CancelledError, ConfigurationError, DecodeError, NetworkError, TileError
from tiles.executor import FetchExecutor
from tiles.fetcher import FetchPipeline, TileTransport
from tiles.key import TileKey, quadkey
from tiles.tile import Tile, TileEvent, TileStatus
from tiles.writer import CacheWriter, TileWriteRequest

__all__ = [
    'CacheStats',
    'CacheWriter',
    'CancelledError',
    'ConfigurationError',
    'DecodeError',
    'DiskCacheStats',
    'DiskTileCache',
    'FetchExecutor',
    'FetchPipeline',
    'NetworkError',
    'RasterContent',
    'ReconcileResult',
    'Tile',
    'TileCache',
    'TileError',
    'TileEvent',
    'TileKey',
    'TilePlacement',
    'TileStatus',
    'TileTransport',
    'TileWriteRequest',
    'VectorContent',
    'VectorFeature',
    'VectorLayer',
    'compute_needed_keys',
    'iter_placements',
    'quadkey',
]
