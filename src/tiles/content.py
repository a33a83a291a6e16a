"""Decoded tile payloads and the decoders that produce them.

Raster tiles become Pillow RGBA images. Vector tiles may arrive gzip or
zlib compressed (providers do not always set Content-Encoding), so the
payload is sniffed by its magic bytes before being handed to
``mapbox_vector_tile``.
"""

from __future__ import annotations

import gzip
import logging
import zlib
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any

import mapbox_vector_tile
from PIL import Image, UnidentifiedImageError

from shared.constants import VECTOR_TILE_EXTENT, ContentType
from tiles.errors import DecodeError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'
ZLIB_MAGIC = 0x78


@dataclass
class RasterContent:
    """Decoded raster tile."""

    image: Image.Image | None

    content_type = ContentType.RASTER

    @property
    def size_bytes(self) -> int:
        if self.image is None:
            return 0
        w, h = self.image.size
        return w * h * 4

    def release(self) -> None:
        if self.image is not None:
            self.image.close()
            self.image = None


@dataclass
class VectorFeature:
    geometry_type: str
    coordinates: Any
    properties: dict[str, Any] = field(default_factory=dict)
    feature_id: int | None = None


@dataclass
class VectorLayer:
    name: str
    extent: int
    features: list[VectorFeature] = field(default_factory=list)


@dataclass
class VectorContent:
    """Decoded vector tile: named layers of features in tile-extent units."""

    layers: dict[str, VectorLayer]
    raw_size: int = 0

    content_type = ContentType.VECTOR

    @property
    def size_bytes(self) -> int:
        return self.raw_size

    @property
    def feature_count(self) -> int:
        return sum(len(layer.features) for layer in self.layers.values())

    def release(self) -> None:
        self.layers = {}


TileContent = RasterContent | VectorContent


def decompress(data: bytes) -> bytes:
    """Inflate gzip or zlib payloads; other data is returned unchanged."""
    try:
        if data[:2] == GZIP_MAGIC:
            return gzip.decompress(data)
        if data[:1] and data[0] == ZLIB_MAGIC:
            return zlib.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        msg = f'Corrupt compressed payload: {e}'
        raise DecodeError(msg) from e
    return data


def decode_raster(data: bytes) -> RasterContent:
    """Decode PNG/JPEG/WebP bytes into an RGBA image."""
    if not data:
        msg = 'Empty raster payload'
        raise DecodeError(msg)
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            rgba = img.convert('RGBA')
    except (UnidentifiedImageError, OSError, ValueError) as e:
        msg = f'Cannot decode raster tile: {e}'
        raise DecodeError(msg) from e
    return RasterContent(image=rgba)


def decode_vector(data: bytes) -> VectorContent:
    """Decode a (possibly compressed) Mapbox vector tile."""
    raw_size = len(data)
    payload = decompress(data)
    try:
        decoded = mapbox_vector_tile.decode(payload, default_options={'y_coord_down': True})
    except Exception as e:
        msg = f'Cannot decode vector tile: {e}'
        raise DecodeError(msg) from e

    layers: dict[str, VectorLayer] = {}
    for name, layer in decoded.items():
        extent = int(layer.get('extent', VECTOR_TILE_EXTENT))
        features = []
        for feature in layer.get('features', []):
            geometry = feature.get('geometry') or {}
            features.append(
                VectorFeature(
                    geometry_type=geometry.get('type', 'Unknown'),
                    coordinates=geometry.get('coordinates', []),
                    properties=dict(feature.get('properties') or {}),
                    feature_id=feature.get('id'),
                )
            )
        layers[name] = VectorLayer(name=name, extent=extent, features=features)
    logger.debug('Decoded vector tile: %d layers, %d bytes', len(layers), raw_size)
    return VectorContent(layers=layers, raw_size=raw_size)


def decode(data: bytes, content_type: ContentType) -> TileContent:
    if content_type is ContentType.VECTOR:
        return decode_vector(data)
    return decode_raster(data)
