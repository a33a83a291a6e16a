"""Background writer for the persistent tile store.

Downloads complete on the fetch loop; committing their bytes to SQLite there
would stall other fetches, so CacheWriter batches writes on its own thread.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shared.constants import TILE_WRITE_QUEUE_SIZE

if TYPE_CHECKING:
    from tiles.disk_cache import DiskTileCache
    from tiles.key import TileKey

logger = logging.getLogger(__name__)

# Queue item telling the thread to flush and exit
_STOP = None


@dataclass
class TileWriteRequest:
    key: TileKey
    data: bytes
    fetched_at: int | None = None


class CacheWriter:
    """Feeds a DiskTileCache from a bounded queue.

    ``put`` never waits on SQLite. Requests are committed in transactions of
    up to BATCH_SIZE tiles, or whatever arrived within BATCH_TIMEOUT seconds.
    ``stop`` commits everything still queued before the thread exits.
    """

    BATCH_SIZE = 50
    BATCH_TIMEOUT = 1.0

    def __init__(self, cache: DiskTileCache, max_queue_size: int | None = None) -> None:
        self.cache = cache
        self.max_queue_size = max_queue_size or TILE_WRITE_QUEUE_SIZE
        self._queue: queue.Queue[TileWriteRequest | None] = queue.Queue(self.max_queue_size)
        self._thread: threading.Thread | None = None
        self._running = False
        self._written = 0
        self._dropped = 0

    def __enter__(self) -> CacheWriter:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name='tile-cache-writer', daemon=True)
        self._thread.start()
        logger.info('CacheWriter started (queue of %d)', self.max_queue_size)

    def stop(self, timeout: float = 30.0) -> None:
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning('CacheWriter queue still full, stopping without sentinel')

        thread = self._thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning('CacheWriter thread still alive after %.1fs', timeout)
        logger.info('CacheWriter stopped: %d tiles written, %d dropped', self._written, self._dropped)

    def put(self, key: TileKey, data: bytes, fetched_at: int | None = None, block: bool = False) -> bool:
        """Queue bytes for ``key``. False when stopped or when the queue is full."""
        if not self._running:
            return False
        try:
            self._queue.put(TileWriteRequest(key, data, fetched_at), block=block, timeout=1.0 if block else None)
        except queue.Full:
            self._dropped += 1
            logger.warning('Write queue full, dropping tile %s', key.path)
            return False
        return True

    def queue_size(self) -> int:
        return self._queue.qsize()

    def is_running(self) -> bool:
        return self._running and self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return {
            'written': self._written,
            'dropped': self._dropped,
            'queue_size': self.queue_size(),
            'running': self.is_running(),
        }

    # --- writer thread

    def _run(self) -> None:
        done = False
        while not done:
            batch, done = self._collect()
            self._commit(batch)
            if not self._running and self._queue.empty():
                done = True

    def _collect(self) -> tuple[list[TileWriteRequest], bool]:
        """Gather one batch; the flag is True once the stop marker was read."""
        batch: list[TileWriteRequest] = []
        deadline = time.monotonic() + self.BATCH_TIMEOUT
        while len(batch) < self.BATCH_SIZE:
            wait = deadline - time.monotonic()
            if wait <= 0:
                break
            try:
                item = self._queue.get(timeout=wait)
            except queue.Empty:
                break
            if item is _STOP:
                return batch, True
            batch.append(item)
        return batch, False

    def _commit(self, batch: list[TileWriteRequest]) -> None:
        # one transaction per database file and fetch time
        groups: defaultdict[tuple[int, int | None], list[tuple[int, int, str, bytes]]] = defaultdict(list)
        for req in batch:
            groups[req.key.zoom, req.fetched_at].append((req.key.x, req.key.y, req.key.layer_id, req.data))

        for (zoom, fetched_at), rows in groups.items():
            try:
                self.cache.put_batch(zoom, rows, fetched_at)
            except Exception:
                logger.exception('Failed to store %d tiles at zoom %d', len(rows), zoom)
                continue
            self._written += len(rows)
