"""Overlay elements drawn above the tiles: markers and drawings."""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from geo.points import GeoPoint
from shared.constants import (
    DRAWING_DEFAULT_COLOR,
    DRAWING_DEFAULT_WIDTH_PX,
    LINE_HIT_TOLERANCE_PX,
    MARKER_DEFAULT_COLOR,
    MARKER_DEFAULT_SIZE_PX,
)

if TYPE_CHECKING:
    from PIL import ImageDraw

    from domain.view_state import ViewState

logger = logging.getLogger(__name__)

Color = tuple[int, int, int, int]
ScreenPoint = tuple[float, float]


def _segment_distance(p: ScreenPoint, a: ScreenPoint, b: ScreenPoint) -> float:
    ax, ay = a
    bx, by = b
    px, py = p
    dx, dy = bx - ax, by - ay
    seg_len2 = dx * dx + dy * dy
    if seg_len2 == 0:
        return math.hypot(px - ax, py - ay)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / seg_len2))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def _point_in_polygon(p: ScreenPoint, vertices: list[ScreenPoint]) -> bool:
    px, py = p
    inside = False
    j = len(vertices) - 1
    for i, (xi, yi) in enumerate(vertices):
        xj, yj = vertices[j]
        if (yi > py) != (yj > py) and px < (xj - xi) * (py - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


@dataclass(eq=False)
class MapElement(ABC):
    """Something drawn over the map and hit by raycasts.

    Elements compare by identity so managers can hold equal-looking copies.
    """

    label: str = field(default='', kw_only=True)
    visible: bool = field(default=True, kw_only=True)
    z_index: int = field(default=0, kw_only=True)

    @abstractmethod
    def screen_points(self, view: ViewState) -> list[ScreenPoint]: ...

    @abstractmethod
    def render(self, canvas: ImageDraw.ImageDraw, view: ViewState) -> None: ...

    @abstractmethod
    def hit_test(self, view: ViewState, px: float, py: float) -> bool: ...

    def screen_bounds(self, view: ViewState) -> tuple[float, float, float, float] | None:
        """Screen bounding box, or None while the element has no points."""
        pts = self.screen_points(view)
        if not pts:
            return None
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        return min(xs), min(ys), max(xs), max(ys)


@dataclass(eq=False)
class Marker(MapElement):
    """Square marker centered on ``location``."""

    location: GeoPoint
    size: int = MARKER_DEFAULT_SIZE_PX
    color: Color = MARKER_DEFAULT_COLOR

    def screen_points(self, view: ViewState) -> list[ScreenPoint]:
        return [view.location_to_screen(self.location.lon, self.location.lat)]

    def screen_bounds(self, view: ViewState) -> tuple[float, float, float, float]:
        cx, cy = self.screen_points(view)[0]
        half = self.size / 2
        return cx - half, cy - half, cx + half, cy + half

    def render(self, canvas: ImageDraw.ImageDraw, view: ViewState) -> None:
        canvas.ellipse(self.screen_bounds(view), fill=self.color, outline=(0, 0, 0, 255))

    def hit_test(self, view: ViewState, px: float, py: float) -> bool:
        left, top, right, bottom = self.screen_bounds(view)
        return left <= px <= right and top <= py <= bottom


@dataclass(eq=False)
class Line(MapElement):
    points: list[GeoPoint]
    color: Color = DRAWING_DEFAULT_COLOR
    width: int = DRAWING_DEFAULT_WIDTH_PX

    def screen_points(self, view: ViewState) -> list[ScreenPoint]:
        return [view.location_to_screen(p.lon, p.lat) for p in self.points]

    def render(self, canvas: ImageDraw.ImageDraw, view: ViewState) -> None:
        pts = self.screen_points(view)
        if len(pts) >= 2:
            canvas.line(pts, fill=self.color, width=self.width, joint='curve')

    def hit_test(self, view: ViewState, px: float, py: float) -> bool:
        pts = self.screen_points(view)
        tolerance = max(self.width / 2, LINE_HIT_TOLERANCE_PX)
        return any(
            _segment_distance((px, py), a, b) <= tolerance for a, b in zip(pts, pts[1:])
        )


@dataclass(eq=False)
class Polygon(MapElement):
    points: list[GeoPoint]
    fill: Color | None = (DRAWING_DEFAULT_COLOR[0], DRAWING_DEFAULT_COLOR[1], DRAWING_DEFAULT_COLOR[2], 96)
    outline: Color = DRAWING_DEFAULT_COLOR
    width: int = DRAWING_DEFAULT_WIDTH_PX

    def screen_points(self, view: ViewState) -> list[ScreenPoint]:
        return [view.location_to_screen(p.lon, p.lat) for p in self.points]

    def render(self, canvas: ImageDraw.ImageDraw, view: ViewState) -> None:
        pts = self.screen_points(view)
        if len(pts) >= 3:
            canvas.polygon(pts, fill=self.fill, outline=self.outline, width=self.width)

    def hit_test(self, view: ViewState, px: float, py: float) -> bool:
        pts = self.screen_points(view)
        if len(pts) < 3:
            return False
        if self.fill is not None and _point_in_polygon((px, py), pts):
            return True
        tolerance = max(self.width / 2, LINE_HIT_TOLERANCE_PX)
        closed = [*pts, pts[0]]
        return any(
            _segment_distance((px, py), a, b) <= tolerance for a, b in zip(closed, closed[1:])
        )


@dataclass(eq=False)
class Rectangle(Polygon):
    """Axis-aligned rectangle given by two geographic corners."""

    points: list[GeoPoint] = field(default_factory=list)
    top_left: GeoPoint | None = None
    bottom_right: GeoPoint | None = None

    def __post_init__(self) -> None:
        if self.top_left is not None and self.bottom_right is not None:
            tl, br = self.top_left, self.bottom_right
            self.points = [
                tl,
                GeoPoint(br.lon, tl.lat),
                br,
                GeoPoint(tl.lon, br.lat),
            ]


T = TypeVar('T', bound=MapElement)


class ElementManager(Generic[T]):
    """Ordered collection of overlay elements of one kind.

    Later elements draw above earlier ones; ``hit_test`` returns the topmost
    first. Change listeners fire after every mutation.
    """

    def __init__(self, factory: Callable[..., T] | None = None, name: str = '') -> None:
        self.name = name or (factory.__name__.lower() + 's' if factory else 'elements')
        self._factory = factory
        self._items: list[T] = []
        self._lock = threading.RLock()
        self._listeners: list[Callable[[ElementManager[T]], None]] = []
        self.version = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        with self._lock:
            return iter(list(self._items))

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __contains__(self, item: object) -> bool:
        return any(existing is item for existing in self._items)

    def on_change(self, listener: Callable[[ElementManager[T]], None]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception('Element listener failed for %s', self.name)

    def create(self, *args, **kwargs) -> T:
        if self._factory is None:
            msg = f'{self.name}: no factory configured'
            raise TypeError(msg)
        return self.add(self._factory(*args, **kwargs))

    def add(self, item: T) -> T:
        with self._lock:
            self._items.append(item)
        self._changed()
        return item

    def remove(self, item: T) -> bool:
        with self._lock:
            index = self.index_of(item)
            if index < 0:
                return False
            del self._items[index]
        self._changed()
        return True

    def remove_by(self, predicate: Callable[[T], bool]) -> int:
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if not predicate(item)]
            removed = before - len(self._items)
        if removed:
            self._changed()
        return removed

    def index_of(self, item: T) -> int:
        with self._lock:
            for i, existing in enumerate(self._items):
                if existing is item:
                    return i
        return -1

    def clear(self) -> None:
        with self._lock:
            had_items = bool(self._items)
            self._items.clear()
        if had_items:
            self._changed()

    def ordered(self) -> list[T]:
        """Visible elements in draw order (bottom first)."""
        with self._lock:
            items = [item for item in self._items if item.visible]
        return sorted(items, key=lambda item: item.z_index)

    def hit_test(self, view: ViewState, px: float, py: float) -> list[T]:
        """Visible elements under the pixel, topmost first."""
        return [item for item in reversed(self.ordered()) if item.hit_test(view, px, py)]
