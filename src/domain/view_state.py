"""Current viewport: fractional center tile, zoom and pixel size."""

from __future__ import annotations

import logging
import math
import threading
from typing import TYPE_CHECKING

from geo.points import GeoPoint
from geo.projection import WGS84Projection
from shared.constants import MAX_ZOOM, MIN_ZOOM, TILE_SIZE

if TYPE_CHECKING:
    from geo.projection import Projection

logger = logging.getLogger(__name__)


class ViewState:
    """Map view owned by the frame driver.

    ``x``/``y`` are fractional tile coordinates of the viewport center at
    ``zoom``. x wraps around the antimeridian, y is clamped to the world.
    Every mutation bumps ``version``.
    """

    def __init__(
        self,
        width: int = 800,
        height: int = 600,
        *,
        zoom: int = 0,
        projection: Projection | None = None,
        tile_size: int = TILE_SIZE,
    ) -> None:
        self.projection = projection or WGS84Projection()
        self.tile_size = tile_size
        self._lock = threading.Lock()
        self._zoom = self._clamp_zoom(zoom)
        self._width = max(1, int(width))
        self._height = max(1, int(height))
        n = 1 << self._zoom
        self._x = n / 2
        self._y = n / 2
        self._version = 0

    def __repr__(self) -> str:
        return (
            f'ViewState(x={self._x:.4f}, y={self._y:.4f}, zoom={self._zoom}, '
            f'size={self._width}x{self._height}, v{self._version})'
        )

    @staticmethod
    def _clamp_zoom(zoom: int) -> int:
        return max(MIN_ZOOM, min(MAX_ZOOM, int(zoom)))

    def _normalize(self, x: float, y: float) -> tuple[float, float]:
        n = 1 << self._zoom
        if not math.isfinite(x):
            x = n / 2
        if not math.isfinite(y):
            y = n / 2
        return x % n, min(max(y, 0.0), float(n))

    def _bump(self) -> None:
        self._version += 1

    # --- read

    @property
    def x(self) -> float:
        return self._x

    @property
    def y(self) -> float:
        return self._y

    @property
    def zoom(self) -> int:
        return self._zoom

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def version(self) -> int:
        return self._version

    @property
    def grid_size(self) -> int:
        return 1 << self._zoom

    @property
    def location(self) -> GeoPoint:
        """Geographic position of the viewport center."""
        lon, lat = self.projection.tile_to_geo(self._x, self._y, self._zoom)
        return GeoPoint.normalized(lon, lat, self.projection.max_latitude)

    def snapshot(self) -> tuple[float, float, int, int, int]:
        with self._lock:
            return self._x, self._y, self._zoom, self._width, self._height

    # --- mutate

    def set_center_tile(self, x: float, y: float) -> None:
        with self._lock:
            self._x, self._y = self._normalize(x, y)
            self._bump()

    def set_location(self, lon: float, lat: float) -> None:
        tx, ty = self.projection.geo_to_tile(lon, lat, self._zoom)
        self.set_center_tile(tx, ty)

    def pan(self, dx_px: float, dy_px: float) -> None:
        """Move the view by screen pixels; positive dx moves east, dy south."""
        with self._lock:
            self._x, self._y = self._normalize(
                self._x + dx_px / self.tile_size,
                self._y + dy_px / self.tile_size,
            )
            self._bump()

    def set_zoom(self, zoom: int) -> None:
        """Change zoom keeping the geographic center."""
        zoom = self._clamp_zoom(zoom)
        with self._lock:
            if zoom == self._zoom:
                return
            factor = math.pow(2, zoom - self._zoom)
            x, y = self._x * factor, self._y * factor
            self._zoom = zoom
            self._x, self._y = self._normalize(x, y)
            self._bump()

    def zoom_by(self, delta: int) -> None:
        self.set_zoom(self._zoom + delta)

    def resize(self, width: int, height: int) -> None:
        with self._lock:
            width, height = max(1, int(width)), max(1, int(height))
            if (width, height) == (self._width, self._height):
                return
            self._width, self._height = width, height
            self._bump()

    # --- screen mapping

    def screen_to_tile(self, px: float, py: float) -> tuple[float, float]:
        """Screen pixel -> fractional tile coordinate (x not wrapped)."""
        return (
            self._x + (px - self._width / 2) / self.tile_size,
            self._y + (py - self._height / 2) / self.tile_size,
        )

    def tile_to_screen(self, tx: float, ty: float) -> tuple[float, float]:
        """Fractional tile coordinate -> screen pixel, using the nearest x wrap."""
        n = self.grid_size
        dx = tx - self._x
        dx -= round(dx / n) * n
        return (
            self._width / 2 + dx * self.tile_size,
            self._height / 2 + (ty - self._y) * self.tile_size,
        )

    def screen_to_location(self, px: float, py: float) -> GeoPoint:
        tx, ty = self.screen_to_tile(px, py)
        lon, lat = self.projection.tile_to_geo(tx % self.grid_size, ty, self._zoom)
        return GeoPoint.normalized(lon, lat, self.projection.max_latitude)

    def location_to_screen(self, lon: float, lat: float) -> tuple[float, float]:
        tx, ty = self.projection.geo_to_tile(lon, lat, self._zoom)
        return self.tile_to_screen(tx, ty)
