"""Render-surface contract shared by all display backends.

A drawer composites whatever tiles are loaded plus overlay elements and
answers raycast queries. Lifecycle::

    UNINITIALIZED -> INITIALIZED -> DISPOSED

DISPOSED is terminal: draw calls become no-ops and raycasts miss.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tiles.coverage import iter_placements

if TYPE_CHECKING:
    from collections.abc import Iterable

    from domain.view_state import ViewState
    from geo.points import GeoPoint
    from render.elements import ElementManager, MapElement
    from tiles.cache import TileCache
    from tiles.tile import Tile

logger = logging.getLogger(__name__)


class DrawerState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZED = 'initialized'
    DISPOSED = 'disposed'


class StaleDrawerError(RuntimeError):
    """Raised when a disposed drawer is initialized again."""


@dataclass(frozen=True)
class Ray:
    """Ray in surface space: x/y are screen pixels, z is height above the map."""

    origin: tuple[float, float, float]
    direction: tuple[float, float, float]

    @classmethod
    def from_screen(cls, px: float, py: float, height: float = 1.0) -> Ray:
        """Ray shot straight down at a screen pixel."""
        return cls((px, py, height), (0.0, 0.0, -1.0))

    def intersect_plane(self, z: float = 0.0) -> tuple[float, float, float] | None:
        """Distance and (x, y) where the ray crosses the horizontal plane ``z``."""
        ox, oy, oz = self.origin
        dx, dy, dz = self.direction
        if dz == 0:
            return None
        t = (z - oz) / dz
        if t < 0:
            return None
        length = math.sqrt(dx * dx + dy * dy + dz * dz)
        return t * length, ox + t * dx, oy + t * dy


@dataclass(frozen=True)
class RaycastHit:
    pixel: tuple[int, int]
    location: GeoPoint
    distance: float
    color: tuple[int, ...] | None = None
    element: MapElement | None = None
    feature: object | None = None


class MapDrawer(ABC):
    """Base for display backends.

    Subclasses implement the ``_on_*`` hooks; the public methods enforce the
    lifecycle so every backend behaves the same after disposal.
    """

    def __init__(self, view: ViewState, cache: TileCache, layer_ids: Iterable[str] = ()) -> None:
        self.view = view
        self.cache = cache
        self.layer_ids = list(layer_ids)
        self.element_managers: list[ElementManager] = []
        self._state = DrawerState.UNINITIALIZED
        self.frames_drawn = 0

    @property
    def state(self) -> DrawerState:
        return self._state

    @property
    def is_disposed(self) -> bool:
        return self._state is DrawerState.DISPOSED

    def add_element_manager(self, manager: ElementManager) -> None:
        if manager not in self.element_managers:
            self.element_managers.append(manager)

    def initialize(self) -> None:
        if self._state is DrawerState.DISPOSED:
            msg = f'{type(self).__name__} was disposed and cannot be initialized again'
            raise StaleDrawerError(msg)
        if self._state is DrawerState.INITIALIZED:
            return
        self._on_initialize()
        self._state = DrawerState.INITIALIZED
        logger.debug('%s initialized', type(self).__name__)

    def draw(self) -> None:
        """Composite loaded tiles and elements for the current view."""
        if self._state is DrawerState.DISPOSED:
            return
        if self._state is DrawerState.UNINITIALIZED:
            self.initialize()
        self._on_draw()
        self.draw_elements()
        self.frames_drawn += 1

    def draw_elements(self) -> None:
        if self._state is not DrawerState.INITIALIZED:
            return
        self._on_draw_elements(self._elements_in_order())

    def raycast(self, ray: Ray, max_distance: float = math.inf) -> RaycastHit | None:
        if self._state is not DrawerState.INITIALIZED:
            return None
        return self._on_raycast(ray, max_distance)

    def dispose(self) -> None:
        if self._state is DrawerState.DISPOSED:
            return
        previous, self._state = self._state, DrawerState.DISPOSED
        if previous is DrawerState.INITIALIZED:
            self._on_dispose()
        logger.debug('%s disposed', type(self).__name__)

    def visible_tiles(self, layer_id: str) -> list[tuple[Tile, int, int]]:
        """Loaded tiles of a layer with their screen offsets; others are skipped."""
        out = []
        for placement in iter_placements(self.view, layer_id, margin=0):
            tile = self.cache.get(placement.key)
            if tile is not None and tile.is_loaded:
                out.append((tile, placement.left, placement.top))
        return out

    def elements_at(self, px: float, py: float) -> list[MapElement]:
        """Elements under a pixel, topmost first across all managers."""
        hits: list[MapElement] = []
        for manager in reversed(self.element_managers):
            hits.extend(manager.hit_test(self.view, px, py))
        return hits

    def _elements_in_order(self) -> list[MapElement]:
        return [item for manager in self.element_managers for item in manager.ordered()]

    def __enter__(self) -> MapDrawer:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()

    @abstractmethod
    def _on_initialize(self) -> None: ...

    @abstractmethod
    def _on_draw(self) -> None: ...

    @abstractmethod
    def _on_draw_elements(self, elements: list[MapElement]) -> None: ...

    @abstractmethod
    def _on_raycast(self, ray: Ray, max_distance: float) -> RaycastHit | None: ...

    @abstractmethod
    def _on_dispose(self) -> None: ...
