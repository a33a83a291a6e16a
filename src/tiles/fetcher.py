"""Fetch pipeline: tile key -> URL -> bytes -> decoded content.

Every failure ends at the owning tile as ``error`` with a typed reason;
nothing propagates to the caller of ``schedule``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import TYPE_CHECKING, Protocol

from providers.urls import build_url
from shared.constants import DOWNLOAD_CONCURRENCY
from tiles.content import decode
from tiles.errors import ConfigurationError, DecodeError, NetworkError, TileError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from domain.models import LayerConfig
    from providers.keys import KeyManager
    from providers.sources import ProviderRegistry
    from providers.urls import TokenResolver
    from tiles.disk_cache import DiskTileCache
    from tiles.tile import Tile
    from tiles.writer import CacheWriter

logger = logging.getLogger(__name__)


class TileTransport(Protocol):
    """Web-request collaborator: URL in, bytes out."""

    async def fetch(self, url: str) -> bytes: ...


class FetchPipeline:
    """Turns queued tiles into loaded or errored ones.

    ``schedule`` is safe to call from any thread; the coroutine runs on
    whatever ``submit`` hands it to, typically a FetchExecutor.
    """

    def __init__(
        self,
        transport: TileTransport,
        registry: ProviderRegistry,
        *,
        keys: KeyManager | None = None,
        submit: Callable[[Awaitable[None]], object] | None = None,
        concurrency: int = DOWNLOAD_CONCURRENCY,
        disk_cache: DiskTileCache | None = None,
        writer: CacheWriter | None = None,
        resolver: TokenResolver | None = None,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.keys = keys
        self.resolver = resolver
        self.disk_cache = disk_cache
        self.writer = writer
        self._submit = submit
        self._concurrency = max(1, concurrency)
        self._sem: asyncio.Semaphore | None = None
        self._reported_layers: set[str] = set()
        self._lock = threading.Lock()
        self._stats = {'fetched': 0, 'disk_hits': 0, 'disk_corrupt': 0, 'failed': 0, 'discarded': 0}

    @property
    def stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def _count(self, name: str) -> None:
        with self._lock:
            self._stats[name] += 1

    def schedule(self, tile: Tile) -> None:
        """Hand a queued tile to the executor; never blocks."""
        if self._submit is None:
            msg = 'FetchPipeline has no executor to submit to'
            raise RuntimeError(msg)
        self._submit(self.load(tile))

    def reset_layer(self, layer_id: str | None = None) -> None:
        """Re-enable configuration error reporting for a layer (or all)."""
        with self._lock:
            if layer_id is None:
                self._reported_layers.clear()
            else:
                self._reported_layers.discard(layer_id)

    def _semaphore(self) -> asyncio.Semaphore:
        # created lazily so it belongs to the loop that runs the fetches
        if self._sem is None:
            self._sem = asyncio.Semaphore(self._concurrency)
        return self._sem

    def build_url(self, tile: Tile) -> tuple[LayerConfig, str]:
        layer = self.registry.get(tile.key.layer_id)
        if not layer.supports_zoom(tile.key.zoom):
            msg = f'Layer {layer.id!r} does not serve zoom {tile.key.zoom}'
            raise ConfigurationError(msg)
        url = build_url(
            layer.url_template,
            tile.key,
            layer=layer,
            keys=self.keys,
            resolver=self.resolver,
        )
        return layer, url

    async def load(self, tile: Tile) -> None:
        """Run one tile through the pipeline and transition it exactly once."""
        if not tile.mark_loading():
            logger.debug('Tile %s disposed before loading', tile.key.path)
            return

        started = time.monotonic()
        try:
            layer, url = self.build_url(tile)
            data = await self._read_disk(tile)
            content = None
            if data is not None:
                tile.set_raw(data)
                try:
                    content = decode(data, layer.content_type)
                except DecodeError as e:
                    await self._drop_corrupt(tile, e)
                    data = None
            from_disk = data is not None
            if data is None:
                async with self._semaphore():
                    data = await self.transport.fetch(url)
                tile.set_raw(data)
                content = decode(data, layer.content_type)
        except TileError as e:
            self._fail(tile, e)
            return
        except asyncio.CancelledError:
            self._fail(tile, NetworkError('Fetch cancelled by shutdown'))
            raise
        except Exception as e:
            logger.exception('Unexpected failure loading tile %s', tile.key.path)
            self._fail(tile, DecodeError(f'Unexpected failure: {e}'))
            return

        if from_disk:
            self._count('disk_hits')
        else:
            self._count('fetched')
            if self.writer is not None:
                self.writer.put(tile.key, data)

        if tile.complete(content):
            logger.debug(
                'Tile %s loaded (%d bytes, %.0f ms%s)',
                tile.key.path,
                len(data),
                (time.monotonic() - started) * 1000,
                ', disk' if from_disk else '',
            )
        else:
            self._count('discarded')
            logger.debug('Tile %s finished after eviction, result discarded', tile.key.path)

    async def _read_disk(self, tile: Tile) -> bytes | None:
        if self.disk_cache is None:
            return None
        try:
            return await asyncio.to_thread(self.disk_cache.get, tile.key)
        except Exception:
            logger.exception('Disk cache read failed for %s', tile.key.path)
            return None

    async def _drop_corrupt(self, tile: Tile, error: DecodeError) -> None:
        """Forget undecodable disk bytes so the tile is fetched from the network."""
        self._count('disk_corrupt')
        logger.warning('Cached bytes for %s are corrupt, refetching: %s', tile.key.path, error)
        try:
            await asyncio.to_thread(self.disk_cache.delete, tile.key)
        except Exception:
            logger.exception('Disk cache delete failed for %s', tile.key.path)

    def _fail(self, tile: Tile, error: TileError) -> None:
        self._count('failed')
        if isinstance(error, ConfigurationError):
            layer_id = tile.key.layer_id
            with self._lock:
                first = layer_id not in self._reported_layers
                self._reported_layers.add(layer_id)
            if first:
                logger.error('Layer %s misconfigured: %s', layer_id, error)
        else:
            logger.warning('Tile %s failed: %s', tile.key.path, error)
        if not tile.fail(error):
            self._count('discarded')
