"""Off-screen Pillow buffer backend."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageDraw

from render.drawer import MapDrawer, Ray, RaycastHit
from shared.constants import EMPTY_TILE_COLOR, ContentType

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from domain.view_state import ViewState
    from render.elements import MapElement
    from tiles.cache import TileCache
    from tiles.key import TileKey
    from tiles.tile import Tile

logger = logging.getLogger(__name__)

RESOURCE_NAME = 'buffer-drawer'


class BufferDrawer(MapDrawer):
    """Composites raster tiles into an RGBA image of the viewport size.

    Tiles whose image is not ``tile_size`` square are resampled once and the
    scaled copy is attached to the tile, so it is dropped with the tile.
    """

    def __init__(
        self,
        view: ViewState,
        cache: TileCache,
        layer_ids: Iterable[str] = (),
        *,
        background: tuple[int, int, int, int] = EMPTY_TILE_COLOR,
    ) -> None:
        super().__init__(view, cache, layer_ids)
        self.background = background
        self._buffer: Image.Image | None = None
        self._scaled: dict[TileKey, Image.Image] = {}
        self.tiles_composited = 0

    @property
    def image(self) -> Image.Image | None:
        return self._buffer

    def snapshot(self) -> Image.Image | None:
        return self._buffer.copy() if self._buffer is not None else None

    def save(self, path: str | Path) -> None:
        if self._buffer is None:
            msg = 'Nothing drawn yet'
            raise RuntimeError(msg)
        self._buffer.save(path)
        logger.info('Saved %dx%d buffer to %s', self._buffer.width, self._buffer.height, path)

    def _on_initialize(self) -> None:
        self._buffer = Image.new('RGBA', (self.view.width, self.view.height), self.background)

    def _on_draw(self) -> None:
        size = (self.view.width, self.view.height)
        if self._buffer is None or self._buffer.size != size:
            if self._buffer is not None:
                self._buffer.close()
            self._buffer = Image.new('RGBA', size, self.background)
        else:
            self._buffer.paste(self.background, (0, 0, *size))

        composited = 0
        for layer_id in self.layer_ids:
            for tile, left, top in self.visible_tiles(layer_id):
                img = self._tile_image(tile)
                if img is None:
                    continue
                self._buffer.paste(img, (left, top), img)
                composited += 1
        self.tiles_composited = composited

    def _tile_image(self, tile: Tile) -> Image.Image | None:
        content = tile.content
        if content is None or content.content_type is not ContentType.RASTER:
            return None
        img = content.image
        if img is None:
            return None
        ts = self.view.tile_size
        if img.size == (ts, ts):
            return img
        scaled = self._scaled.get(tile.key)
        if scaled is None:
            scaled = img.resize((ts, ts), Image.Resampling.BILINEAR)
            self._scaled[tile.key] = scaled
            key = tile.key
            tile.attach_resource(f'{RESOURCE_NAME}:{id(self)}', lambda: self._drop_scaled(key))
        return scaled

    def _drop_scaled(self, key: TileKey) -> None:
        img = self._scaled.pop(key, None)
        if img is not None:
            img.close()

    def _on_draw_elements(self, elements: list[MapElement]) -> None:
        if self._buffer is None or not elements:
            return
        canvas = ImageDraw.Draw(self._buffer, 'RGBA')
        for element in elements:
            element.render(canvas, self.view)

    def _on_raycast(self, ray: Ray, max_distance: float) -> RaycastHit | None:
        if self._buffer is None or self.frames_drawn == 0:
            return None
        hit = ray.intersect_plane(0.0)
        if hit is None:
            return None
        distance, x, y = hit
        if distance > max_distance:
            return None
        px, py = math.floor(x), math.floor(y)
        width, height = self._buffer.size
        if not (0 <= px < width and 0 <= py < height):
            return None

        pixels = np.asarray(self._buffer)
        color = tuple(int(c) for c in pixels[py, px])
        elements = self.elements_at(x, y)
        return RaycastHit(
            pixel=(px, py),
            location=self.view.screen_to_location(x, y),
            distance=distance,
            color=color,
            element=elements[0] if elements else None,
        )

    def _on_dispose(self) -> None:
        for img in self._scaled.values():
            img.close()
        self._scaled.clear()
        if self._buffer is not None:
            self._buffer.close()
            self._buffer = None
