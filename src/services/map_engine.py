"""Explicit map context driving frames.

MapEngine owns the view, provider registry, tile cache, fetch pipeline and
drawers. It is passed around explicitly; nothing here is global.

Threading: ``update``/``frame`` and view mutations belong to one frame
thread. Fetches run on the FetchExecutor loop and only touch tiles and the
redraw flag.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from domain.models import EngineSettings
from domain.view_state import ViewState
from geo.projection import get_projection
from infrastructure.http.client import HttpTransport, resolve_cache_dir
from providers.keys import KeyManager
from providers.sources import ProviderRegistry
from render.elements import ElementManager, MapElement, Marker
from shared.diagnostics import log_memory_usage
from tiles.cache import TileCache
from tiles.coverage import compute_needed_keys
from tiles.disk_cache import DiskTileCache
from tiles.executor import FetchExecutor
from tiles.fetcher import FetchPipeline
from tiles.tile import TERMINAL_STATUSES

if TYPE_CHECKING:
    from render.drawer import MapDrawer
    from tiles.fetcher import TileTransport
    from tiles.key import TileKey
    from tiles.tile import Tile, TileEvent
    from tiles.writer import CacheWriter

logger = logging.getLogger(__name__)


class MapEngine:
    """Wires the tile engine together and runs the per-frame loop.

    Usage:
        with MapEngine(settings) as engine:
            engine.add_drawer(BufferDrawer(engine.view, engine.cache, engine.layer_ids))
            while running:
                engine.frame()
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        transport: TileTransport | None = None,
        registry: ProviderRegistry | None = None,
        keys: KeyManager | None = None,
        executor: FetchExecutor | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        s = self.settings

        self.view = ViewState(
            s.width,
            s.height,
            zoom=s.zoom,
            projection=get_projection(s.projection),
        )
        self.view.set_location(s.lon, s.lat)

        self.registry = registry if registry is not None else ProviderRegistry(s.layers)
        self.registry.on_change(self._on_layer_changed)
        self.keys = keys or KeyManager(s.credentials)

        self._owns_executor = executor is None
        self.executor = executor or FetchExecutor()
        if transport is None:
            http = HttpTransport(
                cache_dir=resolve_cache_dir(s.http_cache_dir),
                use_cache=s.http_cache_enabled,
                timeout=s.http_timeout,
                retries=s.http_retries,
            )
            self.executor.on_close(http.close)
            transport = http
        self.transport = transport

        self.disk_cache: DiskTileCache | None = None
        self.writer: CacheWriter | None = None
        if s.disk_cache_enabled:
            from tiles.writer import CacheWriter

            self.disk_cache = DiskTileCache(Path(s.disk_cache_dir).expanduser())
            self.writer = CacheWriter(self.disk_cache)

        self._redraw = threading.Event()
        self.cache = TileCache(
            max_tiles=s.max_tiles,
            max_bytes=s.max_cache_bytes,
            retry_after_sec=s.retry_after_sec,
            download_attempts=s.download_attempts,
            on_event=self._on_tile_event,
        )
        self.pipeline = FetchPipeline(
            self.transport,
            self.registry,
            keys=self.keys,
            submit=self.executor.submit,
            concurrency=s.download_concurrency,
            disk_cache=self.disk_cache,
            writer=self.writer,
        )
        self.cache.bind(self.pipeline.schedule)

        self.base_layer = s.layer_id
        self.overlays = list(s.overlays)
        self.markers: ElementManager[Marker] = ElementManager(Marker, 'markers')
        self.drawings: ElementManager[MapElement] = ElementManager(name='drawings')
        for manager in (self.markers, self.drawings):
            manager.on_change(lambda _m: self.request_redraw())

        self.drawers: list[MapDrawer] = []
        self._needed: dict[str, list[TileKey]] = {}
        self._started = False
        self.frames = 0

    # --- lifecycle

    def start(self) -> MapEngine:
        if self._started:
            return self
        self.registry.get(self.base_layer)
        if self._owns_executor:
            self.executor.start()
        if self.writer is not None:
            self.writer.start()
        self._started = True
        self.request_redraw()
        logger.info(
            'MapEngine started: layer=%s overlays=%s zoom=%d size=%dx%d',
            self.base_layer,
            self.overlays,
            self.view.zoom,
            self.view.width,
            self.view.height,
        )
        return self

    def close(self) -> None:
        if not self._started:
            return
        self._started = False
        for drawer in self.drawers:
            drawer.dispose()
        if self._owns_executor:
            self.executor.stop()
        self.cache.clear()
        if self.writer is not None:
            self.writer.stop()
        if self.disk_cache is not None:
            self.disk_cache.cleanup_lru(self.settings.disk_cache_max_size_mb)
            self.disk_cache.close()
        logger.info('MapEngine closed after %d frames', self.frames)

    def __enter__(self) -> MapEngine:
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- layers and drawers

    @property
    def layer_ids(self) -> list[str]:
        return [self.base_layer, *self.overlays]

    def set_base_layer(self, layer_id: str) -> None:
        self.registry.get(layer_id)
        self.base_layer = layer_id
        self._sync_drawer_layers()
        self.request_redraw()

    def set_overlays(self, layer_ids: list[str]) -> None:
        for layer_id in layer_ids:
            self.registry.get(layer_id)
        self.overlays = list(layer_ids)
        self._sync_drawer_layers()
        self.request_redraw()

    def _sync_drawer_layers(self) -> None:
        for drawer in self.drawers:
            drawer.layer_ids = self.layer_ids

    def add_drawer(self, drawer: MapDrawer) -> MapDrawer:
        drawer.add_element_manager(self.markers)
        drawer.add_element_manager(self.drawings)
        if not drawer.layer_ids:
            drawer.layer_ids = self.layer_ids
        drawer.initialize()
        self.drawers.append(drawer)
        self.request_redraw()
        return drawer

    def remove_drawer(self, drawer: MapDrawer) -> None:
        if drawer in self.drawers:
            self.drawers.remove(drawer)
        drawer.dispose()

    def _on_layer_changed(self, layer_id: str) -> None:
        removed = self.cache.invalidate(lambda key: key.layer_id == layer_id)
        self.pipeline.reset_layer(layer_id)
        if self.disk_cache is not None:
            self.disk_cache.delete_layer(layer_id)
        logger.info('Layer %s changed, %d cached tiles dropped', layer_id, removed)
        self.request_redraw()

    # --- redraw signal

    @property
    def needs_redraw(self) -> bool:
        return self._redraw.is_set()

    def request_redraw(self) -> None:
        self._redraw.set()

    def consume_redraw(self) -> bool:
        if not self._redraw.is_set():
            return False
        self._redraw.clear()
        return True

    def _on_tile_event(self, tile: Tile, event: TileEvent) -> None:
        if event.terminal and not event.cancelled:
            self._redraw.set()

    # --- frame loop

    def update(self) -> dict[str, list[TileKey]]:
        """Recompute demand, reconcile the cache and request missing tiles."""
        needed: dict[str, list[TileKey]] = {}
        for layer_id in self.layer_ids:
            layer = self.registry.find(layer_id)
            if layer is None or not layer.supports_zoom(self.view.zoom):
                needed[layer_id] = []
                continue
            needed[layer_id] = compute_needed_keys(self.view, layer_id)

        all_keys = [key for keys in needed.values() for key in keys]
        result = self.cache.reconcile(all_keys)
        for key in result.missing:
            self.cache.request_tile(key)
        if result.evicted:
            log_memory_usage('after reconcile', logging.DEBUG)
        self._needed = needed
        return needed

    def frame(self) -> bool:
        """One frame: update demand, redraw if anything changed."""
        self.update()
        self.frames += 1
        if not self.consume_redraw():
            return False
        for drawer in self.drawers:
            drawer.draw()
        return True

    def pending_tiles(self) -> list[Tile]:
        """Needed tiles that have not reached a terminal state yet."""
        pending = []
        for keys in self._needed.values():
            for key in keys:
                tile = self.cache.get(key)
                if tile is not None and tile.status not in TERMINAL_STATUSES:
                    pending.append(tile)
        return pending

    def wait_idle(self, timeout: float = 30.0) -> bool:
        """Block until every needed tile finished loading or failed."""
        deadline = time.monotonic() + timeout
        self.update()
        while True:
            pending = self.pending_tiles()
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning('%d tiles still pending after %.1fs', len(pending), timeout)
                return False
            pending[0].wait(remaining)
