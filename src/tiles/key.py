"""Tile identity."""

from __future__ import annotations

from dataclasses import dataclass


def quadkey(x: int, y: int, zoom: int) -> str:
    """Bing-style quadkey: one base-4 digit per zoom level, most significant first."""
    digits = []
    for i in range(zoom, 0, -1):
        digit = 0
        mask = 1 << (i - 1)
        if x & mask:
            digit += 1
        if y & mask:
            digit += 2
        digits.append(str(digit))
    return ''.join(digits)


@dataclass(frozen=True)
class TileKey:
    """Identity of one tile request: grid position, zoom and layer."""

    x: int
    y: int
    zoom: int
    layer_id: str = ''

    @property
    def grid_size(self) -> int:
        return 1 << self.zoom

    @property
    def quadkey(self) -> str:
        return quadkey(self.x, self.y, self.zoom)

    @property
    def path(self) -> str:
        return f'{self.layer_id}/{self.zoom}/{self.x}/{self.y}'

    def is_valid(self) -> bool:
        n = self.grid_size
        return 0 <= self.x < n and 0 <= self.y < n

    def wrapped(self) -> TileKey:
        """Return the key with x normalized modulo 2**zoom."""
        x = self.x % self.grid_size
        if x == self.x:
            return self
        return TileKey(zoom=self.zoom, x=x, y=self.y, layer_id=self.layer_id)

    def parent(self) -> TileKey | None:
        if self.zoom == 0:
            return None
        return TileKey(zoom=self.zoom - 1, x=self.x >> 1, y=self.y >> 1, layer_id=self.layer_id)

    def children(self) -> list[TileKey]:
        x, y, z = self.x << 1, self.y << 1, self.zoom + 1
        return [
            TileKey(zoom=z, x=x + dx, y=y + dy, layer_id=self.layer_id)
            for dy in (0, 1)
            for dx in (0, 1)
        ]

    @classmethod
    def from_path(cls, path: str) -> TileKey:
        """Parse ``layer/zoom/x/y``; the layer part may itself contain slashes."""
        layer_id, zoom, x, y = path.rsplit('/', 3)
        return cls(zoom=int(zoom), x=int(x), y=int(y), layer_id=layer_id)

    def __str__(self) -> str:
        return self.path
