from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shared.constants import TILE_MARGIN
from tiles.key import TileKey

if TYPE_CHECKING:
    from domain.view_state import ViewState


@dataclass(frozen=True)
class TilePlacement:
    """Where a tile lands on screen; ``column`` may lie outside the grid when wrapped."""

    key: TileKey
    column: int
    row: int
    left: int
    top: int


def visible_range(view: ViewState, margin: int = TILE_MARGIN) -> tuple[int, int, int, int]:
    """Column/row span (inclusive) covering the viewport plus ``margin`` tiles.

    Columns are not wrapped; rows are clamped to the grid.
    """
    x, y, zoom, width, height = view.snapshot()
    half_w = width / 2 / view.tile_size
    half_h = height / 2 / view.tile_size
    n = 1 << zoom

    col_min = math.floor(x - half_w) - margin
    col_max = math.floor(x + half_w) + margin
    # never request the same column twice at low zoom
    if col_max - col_min + 1 > n:
        col_min = math.floor(x) - n // 2
        col_max = col_min + n - 1
    row_min = max(0, math.floor(y - half_h) - margin)
    row_max = min(n - 1, math.floor(y + half_h) + margin)
    return col_min, col_max, row_min, row_max


def compute_needed_keys(view: ViewState, layer_id: str, margin: int = TILE_MARGIN) -> list[TileKey]:
    """Keys covering the viewport, nearest to the center first."""
    return [placement.key for placement in iter_placements(view, layer_id, margin)]


def iter_placements(view: ViewState, layer_id: str, margin: int = TILE_MARGIN) -> list[TilePlacement]:
    """Keys with the screen position of their top-left corner, center outwards."""
    col_min, col_max, row_min, row_max = visible_range(view, margin)
    x, y, zoom, width, height = view.snapshot()
    n = 1 << zoom
    ts = view.tile_size

    placements = []
    for row in range(row_min, row_max + 1):
        for col in range(col_min, col_max + 1):
            placements.append(
                TilePlacement(
                    key=TileKey(col % n, row, zoom, layer_id),
                    column=col,
                    row=row,
                    left=math.floor(width / 2 + (col - x) * ts),
                    top=math.floor(height / 2 + (row - y) * ts),
                )
            )
    placements.sort(key=lambda p: (p.column + 0.5 - x) ** 2 + (p.row + 0.5 - y) ** 2)
    return placements
