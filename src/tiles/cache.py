"""In-memory tile cache with LRU eviction and in-flight deduplication.

This module provides TileCache, the owner of every live Tile. At most one
Tile exists per TileKey and at most one fetch per key is in flight: a second
request for a key attaches its listener to the existing Tile instead of
scheduling another fetch.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shared.constants import (
    TILE_CACHE_MAX_SIZE_MB,
    TILE_CACHE_MAX_TILES,
    TILE_DOWNLOAD_ATTEMPTS,
    TILE_RETRY_AFTER_SEC,
)
from tiles.tile import Tile, TileStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from tiles.key import TileKey
    from tiles.tile import TileListener

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Statistics about the in-memory tile cache."""

    total_tiles: int
    total_size_bytes: int
    tiles_by_status: dict[str, int] = field(default_factory=dict)
    requests: int = 0
    hits: int = 0
    evicted: int = 0
    retried: int = 0


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass."""

    evicted: list[TileKey] = field(default_factory=list)
    retried: list[TileKey] = field(default_factory=list)
    missing: list[TileKey] = field(default_factory=list)


class TileCache:
    """Mapping TileKey -> Tile bounded by tile count and decoded bytes.

    Usage:
        cache = TileCache(pipeline.schedule)
        tile = cache.request_tile(TileKey(3, 5, 7, 'osm'), listener)
        cache.reconcile(compute_needed_keys(view, 'osm'))
    """

    def __init__(
        self,
        schedule: Callable[[Tile], None] | None = None,
        *,
        max_tiles: int = TILE_CACHE_MAX_TILES,
        max_bytes: int = TILE_CACHE_MAX_SIZE_MB * 1024 * 1024,
        retry_after_sec: float = TILE_RETRY_AFTER_SEC,
        download_attempts: int = TILE_DOWNLOAD_ATTEMPTS,
        on_event: TileListener | None = None,
    ) -> None:
        """Initialize tile cache.

        Args:
            schedule: Hands a queued tile to the fetch pipeline. Must not block.
            max_tiles: Tile count budget enforced by reconcile().
            max_bytes: Decoded payload budget enforced by reconcile().
            retry_after_sec: Cool-down before a failed tile is fetched again;
                negative disables automatic retries.
            download_attempts: Fetch attempts per tile before it stays in error.
            on_event: Listener attached to every tile the cache schedules.
        """
        self._schedule = schedule
        self.max_tiles = max_tiles
        self.max_bytes = max_bytes
        self.retry_after_sec = retry_after_sec
        self.download_attempts = max(1, download_attempts)
        self._on_event = on_event
        self._tiles: dict[TileKey, Tile] = {}
        self._lock = threading.RLock()
        self._requests = 0
        self._hits = 0
        self._evicted = 0
        self._retried = 0

    def bind(self, schedule: Callable[[Tile], None]) -> None:
        """Set the scheduler when the pipeline is created after the cache."""
        self._schedule = schedule

    def __len__(self) -> int:
        with self._lock:
            return len(self._tiles)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._tiles

    def __iter__(self) -> Iterator[Tile]:
        with self._lock:
            return iter(list(self._tiles.values()))

    def get(self, key: TileKey) -> Tile | None:
        """Return the cached tile without touching or scheduling it."""
        with self._lock:
            return self._tiles.get(key.wrapped())

    def request_tile(self, key: TileKey, listener: TileListener | None = None) -> Tile:
        """Return the tile for ``key``, creating and scheduling it when missing.

        Args:
            key: Tile identity; x is wrapped around the antimeridian.
            listener: Optional subscriber. It fires immediately if the tile
                already reached a terminal state.

        Returns:
            The single Tile for this key.
        """
        key = key.wrapped()
        with self._lock:
            self._requests += 1
            tile = self._tiles.get(key)
            created = tile is None
            if created:
                tile = Tile(key, attempts=self.download_attempts)
                self._tiles[key] = tile
            else:
                self._hits += 1
            tile.touch()

        if listener is not None:
            tile.subscribe(listener)
        if created:
            logger.debug('Tile %s queued', key.path)
            self._dispatch(tile)
        return tile

    def reconcile(self, needed_keys: Iterable[TileKey]) -> ReconcileResult:
        """Align the cache with the keys the view currently needs.

        Needed tiles are touched; needed error tiles whose cool-down elapsed
        are re-queued. Unneeded, unheld tiles are evicted oldest first until
        both budgets hold.

        Args:
            needed_keys: Keys covering the current viewport.

        Returns:
            ReconcileResult with evicted, retried and missing keys. Missing
            keys are not requested here.
        """
        needed = {key.wrapped() for key in needed_keys}
        result = ReconcileResult()
        evicted_tiles: list[Tile] = []
        retry_tiles: list[Tile] = []

        with self._lock:
            for key in needed:
                tile = self._tiles.get(key)
                if tile is None:
                    result.missing.append(key)
                    continue
                tile.touch()
                if tile.retry_due(self.retry_after_sec):
                    retry_tiles.append(tile)

            candidates = sorted(
                (
                    tile
                    for key, tile in self._tiles.items()
                    if key not in needed and tile.hold_count == 0
                ),
                key=lambda t: t.last_used,
            )
            count = len(self._tiles)
            total_bytes = sum(tile.size_bytes for tile in self._tiles.values())
            for tile in candidates:
                if count <= self.max_tiles and total_bytes <= self.max_bytes:
                    break
                del self._tiles[tile.key]
                count -= 1
                total_bytes -= tile.size_bytes
                evicted_tiles.append(tile)
            self._evicted += len(evicted_tiles)
            self._retried += len(retry_tiles)

        for tile in evicted_tiles:
            tile.dispose()
            result.evicted.append(tile.key)
        for tile in retry_tiles:
            if tile.requeue():
                logger.debug('Retrying tile %s (%d attempts left)', tile.key.path, tile.attempts_left)
                self._dispatch(tile)
                result.retried.append(tile.key)

        if result.evicted:
            logger.debug('Evicted %d tiles, %d remain', len(result.evicted), len(self))
        return result

    def invalidate(self, predicate: Callable[[TileKey], bool]) -> int:
        """Evict every tile whose key matches, ignoring holders.

        Returns:
            Number of tiles evicted.
        """
        with self._lock:
            doomed = [tile for key, tile in self._tiles.items() if predicate(key)]
            for tile in doomed:
                del self._tiles[tile.key]
            self._evicted += len(doomed)

        for tile in doomed:
            tile.dispose()
        if doomed:
            logger.info('Invalidated %d tiles', len(doomed))
        return len(doomed)

    def retry(self, key: TileKey) -> bool:
        """Re-queue an error tile now, regardless of cool-down and attempts."""
        tile = self.get(key)
        if tile is None or tile.status is not TileStatus.ERROR:
            return False
        tile.attempts_left = max(tile.attempts_left, 1)
        if not tile.requeue():
            return False
        with self._lock:
            self._retried += 1
        self._dispatch(tile)
        return True

    def hold(self, key: TileKey) -> bool:
        """Protect a cached tile from reconcile eviction."""
        with self._lock:
            tile = self._tiles.get(key.wrapped())
            if tile is None:
                return False
            tile.hold_count += 1
            return True

    def release(self, key: TileKey) -> bool:
        with self._lock:
            tile = self._tiles.get(key.wrapped())
            if tile is None or tile.hold_count == 0:
                return False
            tile.hold_count -= 1
            return True

    def loaded_tiles(self, keys: Iterable[TileKey]) -> list[Tile]:
        """Loaded tiles among ``keys``, in the given order."""
        with self._lock:
            tiles = [self._tiles.get(key.wrapped()) for key in keys]
        return [tile for tile in tiles if tile is not None and tile.is_loaded]

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            tiles = list(self._tiles.values())
            by_status = Counter(tile.status.value for tile in tiles)
            return CacheStats(
                total_tiles=len(tiles),
                total_size_bytes=sum(tile.size_bytes for tile in tiles),
                tiles_by_status=dict(by_status),
                requests=self._requests,
                hits=self._hits,
                evicted=self._evicted,
                retried=self._retried,
            )

    def clear(self) -> int:
        """Dispose every tile. Returns the number removed."""
        with self._lock:
            tiles = list(self._tiles.values())
            self._tiles.clear()
        for tile in tiles:
            tile.dispose()
        logger.info('TileCache cleared: %d tiles disposed', len(tiles))
        return len(tiles)

    def _dispatch(self, tile: Tile) -> None:
        if self._on_event is not None:
            tile.subscribe(self._on_event)
        if self._schedule is None:
            logger.warning('No scheduler bound, tile %s stays queued', tile.key.path)
            return
        self._schedule(tile)
