from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine
    from typing import Any

logger = logging.getLogger(__name__)


class FetchExecutor:
    """Asyncio event loop on a daemon thread.

    The frame thread submits coroutines and gets a concurrent future back;
    it never waits on the loop.

    Usage:
        with FetchExecutor() as executor:
            executor.submit(pipeline.load(tile))
    """

    def __init__(self, name: str = 'tile-fetch') -> None:
        self.name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._pending: set[concurrent.futures.Future] = set()
        self._pending_lock = threading.Lock()
        self._on_close: list[Callable[[], Awaitable[None]]] = []

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def start(self) -> None:
        if self.running:
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self._ready.wait()
        logger.info('FetchExecutor %s started', self.name)

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._loop = None

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Schedule ``coro`` on the loop thread."""
        if not self.running or self._loop is None:
            coro.close()
            msg = f'FetchExecutor {self.name} is not running'
            raise RuntimeError(msg)
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._done)
        return future

    def _done(self, future: concurrent.futures.Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error('Background task failed', exc_info=exc)

    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def on_close(self, closer: Callable[[], Awaitable[None]]) -> None:
        """Register an async cleanup run on the loop before it stops."""
        self._on_close.append(closer)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for submitted work; returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def stop(self, timeout: float = 10.0) -> None:
        """Cancel outstanding work, run cleanups and stop the loop."""
        if not self.running or self._loop is None:
            return
        loop = self._loop

        async def _shutdown() -> None:
            current = asyncio.current_task()
            tasks = [t for t in asyncio.all_tasks() if t is not current]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for closer in self._on_close:
                try:
                    await closer()
                except Exception:
                    logger.exception('Executor cleanup failed')

        try:
            asyncio.run_coroutine_threadsafe(_shutdown(), loop).result(timeout)
        except concurrent.futures.TimeoutError:
            logger.warning('FetchExecutor %s shutdown timed out', self.name)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            if self._thread is not None:
                self._thread.join(timeout)
            self._thread = None
        logger.info('FetchExecutor %s stopped', self.name)

    def __enter__(self) -> FetchExecutor:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
