"""Persistent SQLite store of raw tile bytes.

One database per zoom level keeps files small and lets WAL readers and the
background writer work on different zooms without contending. Payloads are
stored exactly as received (still compressed for vector tiles) so a hit
takes the same decode path as a download.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from shared.constants import TILE_DISK_CACHE_DIR, TILE_DISK_CACHE_MAX_SIZE_MB

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tiles.key import TileKey

logger = logging.getLogger(__name__)


@dataclass
class DiskCacheStats:
    """Statistics about the on-disk tile store."""

    total_tiles: int
    total_size_bytes: int
    tiles_by_zoom: dict[int, int]
    size_by_zoom: dict[int, int]
    oldest_tile: int | None
    newest_tile: int | None


class DiskTileCache:
    """SQLite tile store with separate databases per zoom level.

    Usage:
        with DiskTileCache('/tmp/tiles') as store:
            store.put(key, data)
            data = store.get(key)
    """

    def __init__(self, cache_dir: str | Path | None = None) -> None:
        """Initialize tile store.

        Args:
            cache_dir: Directory for database files. Defaults to TILE_DISK_CACHE_DIR.
        """
        self.cache_dir = Path(cache_dir or TILE_DISK_CACHE_DIR)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._connections: dict[int, sqlite3.Connection] = {}
        self._lock = threading.RLock()
        logger.info('DiskTileCache initialized at %s', self.cache_dir)

    def _db_path(self, zoom: int) -> Path:
        return self.cache_dir / f'zoom_{zoom}.db'

    def _connection(self, zoom: int) -> sqlite3.Connection:
        conn = self._connections.get(zoom)
        if conn is None:
            conn = sqlite3.connect(str(self._db_path(zoom)), check_same_thread=False)
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute('PRAGMA synchronous=NORMAL')
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS tiles (
                    x INTEGER NOT NULL,
                    y INTEGER NOT NULL,
                    layer_id TEXT NOT NULL,
                    tile_data BLOB NOT NULL,
                    fetched_at INTEGER NOT NULL,
                    last_used_at INTEGER NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    PRIMARY KEY (x, y, layer_id)
                );

                CREATE INDEX IF NOT EXISTS idx_tiles_last_used ON tiles(last_used_at);
            ''')
            conn.commit()
            self._connections[zoom] = conn
        return conn

    def _zooms_on_disk(self) -> list[int]:
        zooms = []
        for db_file in self.cache_dir.glob('zoom_*.db'):
            try:
                zooms.append(int(db_file.stem.split('_')[1]))
            except (IndexError, ValueError):
                continue
        return sorted(zooms)

    def get(self, key: TileKey) -> bytes | None:
        """Get stored bytes for ``key`` and bump its LRU timestamp.

        Returns:
            Tile bytes, or None if not stored.
        """
        with self._lock:
            conn = self._connection(key.zoom)
            row = conn.execute(
                'SELECT tile_data FROM tiles WHERE x = ? AND y = ? AND layer_id = ?',
                (key.x, key.y, key.layer_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                'UPDATE tiles SET last_used_at = ? WHERE x = ? AND y = ? AND layer_id = ?',
                (int(time.time()), key.x, key.y, key.layer_id),
            )
            conn.commit()
            return row[0]

    def exists(self, key: TileKey) -> bool:
        with self._lock:
            row = self._connection(key.zoom).execute(
                'SELECT 1 FROM tiles WHERE x = ? AND y = ? AND layer_id = ?',
                (key.x, key.y, key.layer_id),
            ).fetchone()
            return row is not None

    def put(self, key: TileKey, data: bytes, fetched_at: int | None = None) -> None:
        self.put_batch(key.zoom, [(key.x, key.y, key.layer_id, data)], fetched_at)

    def put_batch(
        self,
        zoom: int,
        tiles: Sequence[tuple[int, int, str, bytes]],
        fetched_at: int | None = None,
    ) -> None:
        """Store several tiles of one zoom in a single transaction.

        Args:
            zoom: Zoom level.
            tiles: Sequence of (x, y, layer_id, data) tuples.
            fetched_at: Fetch timestamp. Defaults to now.
        """
        if not tiles:
            return
        now = int(time.time())
        fetched_at = fetched_at or now
        with self._lock:
            conn = self._connection(zoom)
            conn.executemany(
                '''INSERT OR REPLACE INTO tiles
                   (x, y, layer_id, tile_data, fetched_at, last_used_at, size_bytes)
                   VALUES (?, ?, ?, ?, ?, ?, ?)''',
                [(x, y, layer_id, data, fetched_at, now, len(data)) for x, y, layer_id, data in tiles],
            )
            conn.commit()

    def delete(self, key: TileKey) -> bool:
        return self._delete(key.zoom, key.x, key.y, key.layer_id)

    def _delete(self, zoom: int, x: int, y: int, layer_id: str) -> bool:
        with self._lock:
            conn = self._connection(zoom)
            cursor = conn.execute(
                'DELETE FROM tiles WHERE x = ? AND y = ? AND layer_id = ?',
                (x, y, layer_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_layer(self, layer_id: str) -> int:
        """Remove every stored tile of a layer across all zooms."""
        removed = 0
        with self._lock:
            for zoom in self._zooms_on_disk():
                conn = self._connection(zoom)
                cursor = conn.execute('DELETE FROM tiles WHERE layer_id = ?', (layer_id,))
                conn.commit()
                removed += cursor.rowcount
        if removed:
            logger.info('Removed %d stored tiles of layer %s', removed, layer_id)
        return removed

    def get_stats(self) -> DiskCacheStats:
        """Totals and per-zoom breakdown across all databases."""
        total_tiles = 0
        total_size = 0
        tiles_by_zoom: dict[int, int] = {}
        size_by_zoom: dict[int, int] = {}
        oldest_tile: int | None = None
        newest_tile: int | None = None

        with self._lock:
            for zoom in self._zooms_on_disk():
                count, size, oldest, newest = self._connection(zoom).execute(
                    'SELECT COUNT(*), COALESCE(SUM(size_bytes), 0), MIN(fetched_at), MAX(fetched_at) FROM tiles'
                ).fetchone()
                tiles_by_zoom[zoom] = count
                size_by_zoom[zoom] = size
                total_tiles += count
                total_size += size
                if oldest is not None and (oldest_tile is None or oldest < oldest_tile):
                    oldest_tile = oldest
                if newest is not None and (newest_tile is None or newest > newest_tile):
                    newest_tile = newest

        return DiskCacheStats(
            total_tiles=total_tiles,
            total_size_bytes=total_size,
            tiles_by_zoom=tiles_by_zoom,
            size_by_zoom=size_by_zoom,
            oldest_tile=oldest_tile,
            newest_tile=newest_tile,
        )

    def cleanup_lru(self, max_size_mb: float | None = None) -> int:
        """Remove least recently used tiles to stay under the size limit.

        Args:
            max_size_mb: Size budget in MB. Defaults to TILE_DISK_CACHE_MAX_SIZE_MB.

        Returns:
            Number of bytes freed.
        """
        if max_size_mb is None:
            max_size_mb = TILE_DISK_CACHE_MAX_SIZE_MB
        max_size_bytes = int(max_size_mb * 1024 * 1024)

        with self._lock:
            total = self.get_stats().total_size_bytes
            if total <= max_size_bytes:
                return 0
            bytes_to_free = total - max_size_bytes

            rows: list[tuple[int, int, int, str, int, int]] = []
            for zoom in self._zooms_on_disk():
                cursor = self._connection(zoom).execute(
                    'SELECT x, y, layer_id, size_bytes, last_used_at FROM tiles'
                )
                rows.extend((zoom, *row) for row in cursor)
            rows.sort(key=lambda r: r[5])

            bytes_freed = 0
            for zoom, x, y, layer_id, size, _ in rows:
                if bytes_freed >= bytes_to_free:
                    break
                if self._delete(zoom, x, y, layer_id):
                    bytes_freed += size

        logger.info(
            'LRU cleanup: freed %.1f MB (target: %.1f MB)',
            bytes_freed / 1024 / 1024,
            bytes_to_free / 1024 / 1024,
        )
        return bytes_freed

    def clear_zoom(self, zoom: int) -> int:
        """Delete the database of one zoom level.

        Returns:
            Number of tiles deleted.
        """
        db_path = self._db_path(zoom)
        with self._lock:
            if not db_path.exists():
                return 0
            count = self._connection(zoom).execute('SELECT COUNT(*) FROM tiles').fetchone()[0]
            self._connections.pop(zoom).close()
            for suffix in ('', '-wal', '-shm'):
                Path(f'{db_path}{suffix}').unlink(missing_ok=True)
        logger.info('Cleared zoom %d: %d tiles deleted', zoom, count)
        return count

    def close(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()
        logger.info('DiskTileCache closed')

    def __enter__(self) -> DiskTileCache:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
