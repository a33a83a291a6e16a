"""Vector backend: screen-space geometry records instead of pixels."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from render.drawer import MapDrawer, Ray, RaycastHit
from shared.constants import ContentType

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from domain.view_state import ViewState
    from render.elements import MapElement
    from tiles.cache import TileCache
    from tiles.content import VectorFeature
    from tiles.key import TileKey
    from tiles.tile import Tile

logger = logging.getLogger(__name__)


def iter_coordinates(coords: Any) -> Iterator[tuple[float, float]]:
    """Flatten nested GeoJSON-style coordinate arrays into (x, y) pairs."""
    if not coords:
        return
    first = coords[0]
    if isinstance(first, (int, float)):
        yield float(coords[0]), float(coords[1])
        return
    for part in coords:
        yield from iter_coordinates(part)


@dataclass
class GeometryRecord:
    """One drawn feature or element with its screen bounds."""

    kind: str
    bounds: tuple[float, float, float, float]
    points: list[tuple[float, float]] = field(default_factory=list)
    layer: str = ''
    properties: dict[str, Any] = field(default_factory=dict)
    tile_key: TileKey | None = None
    element: MapElement | None = None

    def contains(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        left, top, right, bottom = self.bounds
        return (
            left - tolerance <= x <= right + tolerance
            and top - tolerance <= y <= bottom + tolerance
        )


@dataclass
class _ProjectedFeature:
    layer: str
    feature: VectorFeature
    # tile-local, normalized to [0, 1]
    points: list[tuple[float, float]]


class VectorDrawer(MapDrawer):
    """Collects vector features of loaded tiles as screen-space records.

    Styling is out of scope: records carry geometry, bounds and properties
    for a consumer that renders them. Raycasts test record bounds, topmost
    first, so nothing is hit before the first draw().
    """

    def __init__(
        self,
        view: ViewState,
        cache: TileCache,
        layer_ids: Iterable[str] = (),
        *,
        hit_tolerance: float = 2.0,
    ) -> None:
        super().__init__(view, cache, layer_ids)
        self.hit_tolerance = hit_tolerance
        self.records: list[GeometryRecord] = []
        self.element_records: list[GeometryRecord] = []
        self._projected: dict[TileKey, list[_ProjectedFeature]] = {}

    def _on_initialize(self) -> None:
        self.records = []
        self.element_records = []

    def _on_draw(self) -> None:
        records: list[GeometryRecord] = []
        ts = self.view.tile_size
        for layer_id in self.layer_ids:
            for tile, left, top in self.visible_tiles(layer_id):
                for projected in self._features(tile):
                    pts = [(left + u * ts, top + v * ts) for u, v in projected.points]
                    if not pts:
                        continue
                    xs = [p[0] for p in pts]
                    ys = [p[1] for p in pts]
                    records.append(
                        GeometryRecord(
                            kind=projected.feature.geometry_type,
                            bounds=(min(xs), min(ys), max(xs), max(ys)),
                            points=pts,
                            layer=projected.layer,
                            properties=projected.feature.properties,
                            tile_key=tile.key,
                        )
                    )
        self.records = records
        logger.debug('VectorDrawer collected %d features', len(records))

    def _features(self, tile: Tile) -> list[_ProjectedFeature]:
        cached = self._projected.get(tile.key)
        if cached is not None:
            return cached
        content = tile.content
        if content is None or content.content_type is not ContentType.VECTOR:
            return []
        projected = []
        for layer in content.layers.values():
            extent = float(layer.extent or 1)
            for feature in layer.features:
                points = [(x / extent, y / extent) for x, y in iter_coordinates(feature.coordinates)]
                projected.append(_ProjectedFeature(layer.name, feature, points))
        self._projected[tile.key] = projected
        tile.on_disposed(self._forget)
        return projected

    def _forget(self, tile: Tile) -> None:
        self._projected.pop(tile.key, None)

    def _on_draw_elements(self, elements: list[MapElement]) -> None:
        records = []
        for element in elements:
            bounds = element.screen_bounds(self.view)
            if bounds is None:
                continue
            records.append(
                GeometryRecord(
                    kind=type(element).__name__,
                    bounds=bounds,
                    points=element.screen_points(self.view),
                    element=element,
                )
            )
        self.element_records = records

    def _on_raycast(self, ray: Ray, max_distance: float) -> RaycastHit | None:
        if self.frames_drawn == 0:
            return None
        hit = ray.intersect_plane(0.0)
        if hit is None:
            return None
        distance, x, y = hit
        if distance > max_distance:
            return None

        element = next(
            (r.element for r in reversed(self.element_records) if r.contains(x, y, self.hit_tolerance)),
            None,
        )
        feature = next(
            (r for r in reversed(self.records) if r.contains(x, y, self.hit_tolerance)),
            None,
        )
        if element is None and feature is None:
            return None
        return RaycastHit(
            pixel=(math.floor(x), math.floor(y)),
            location=self.view.screen_to_location(x, y),
            distance=distance,
            element=element,
            feature=feature,
        )

    def _on_dispose(self) -> None:
        self.records = []
        self.element_records = []
        self._projected.clear()
