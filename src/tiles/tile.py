"""Tile entity and its lifecycle.

States::

    queued -> loading -> loaded | error
    error  -> queued                    (retry)
    any    -> disposed                  (terminal)

Transitions are serialized by a per-tile lock. Listeners are invoked
outside the lock, in transition order, so a listener may safely call back
into the tile.

A tile disposed while ``loading`` is only marked for discard: the fetch
still finishes, its result is released without being installed and
listeners receive one terminal event flagged ``cancelled``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tiles.errors import CancelledError, TileError

if TYPE_CHECKING:
    from tiles.content import TileContent
    from tiles.key import TileKey

logger = logging.getLogger(__name__)


class TileStatus(str, Enum):
    QUEUED = 'queued'
    LOADING = 'loading'
    LOADED = 'loaded'
    ERROR = 'error'
    DISPOSED = 'disposed'


TERMINAL_STATUSES = frozenset({TileStatus.LOADED, TileStatus.ERROR, TileStatus.DISPOSED})


@dataclass(frozen=True)
class TileEvent:
    """State change delivered to tile listeners."""

    key: TileKey
    status: TileStatus
    error: TileError | None = None
    cancelled: bool = False

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


TileListener = Callable[['Tile', TileEvent], None]


class InvalidTransitionError(RuntimeError):
    """Raised when a tile is moved to a state its lifecycle does not allow."""


class Tile:
    """A single cached tile: identity, state, payload and subscribers."""

    def __init__(self, key: TileKey, *, attempts: int = 1) -> None:
        self.key = key
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._status = TileStatus.QUEUED
        self._raw: bytes | None = None
        self._content: TileContent | None = None
        self._error: TileError | None = None
        self._discard_pending = False
        self._listeners: list[TileListener] = []
        self._resources: dict[str, Callable[[], None]] = {}
        self._dispose_callbacks: list[Callable[[Tile], None]] = []

        self.attempts_left = attempts
        self.failed_at: float | None = None
        self.hold_count = 0
        self.last_used = time.monotonic()

    def __repr__(self) -> str:
        return f'Tile({self.key.path}, {self._status.value})'

    # --- read-only state

    @property
    def status(self) -> TileStatus:
        return self._status

    @property
    def content(self) -> TileContent | None:
        return self._content

    @property
    def error(self) -> TileError | None:
        return self._error

    @property
    def raw(self) -> bytes | None:
        return self._raw

    @property
    def is_loaded(self) -> bool:
        return self._status is TileStatus.LOADED

    @property
    def is_disposed(self) -> bool:
        return self._status is TileStatus.DISPOSED

    @property
    def discard_pending(self) -> bool:
        return self._discard_pending

    @property
    def size_bytes(self) -> int:
        content = self._content
        if content is not None:
            return content.size_bytes
        raw = self._raw
        return len(raw) if raw is not None else 0

    def touch(self) -> None:
        self.last_used = time.monotonic()

    # --- subscribers

    def subscribe(self, listener: TileListener) -> None:
        """Attach a listener; it fires at once if the tile already finished."""
        with self._lock:
            status = self._status
            finished = status in TERMINAL_STATUSES and not self._discard_pending
            if not finished:
                self._listeners.append(listener)
                return
            event = TileEvent(self.key, status, self._error)
        self._call(listener, event)

    def unsubscribe(self, listener: TileListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def on_disposed(self, callback: Callable[[Tile], None]) -> None:
        """Register a callback run once when the tile is disposed."""
        with self._lock:
            if self._status is not TileStatus.DISPOSED:
                self._dispose_callbacks.append(callback)
                return
        callback(self)

    def attach_resource(self, name: str, release: Callable[[], None]) -> None:
        """Associate a backend resource released on disposal."""
        with self._lock:
            if self._status is not TileStatus.DISPOSED:
                self._resources[name] = release
                return
        release()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the tile reaches a terminal state."""
        return self._done.wait(timeout)

    # --- transitions

    def mark_loading(self) -> bool:
        """queued -> loading. Returns False if the tile was disposed meanwhile."""
        with self._lock:
            if self._status is TileStatus.DISPOSED:
                return False
            if self._status is not TileStatus.QUEUED:
                msg = f'{self.key.path}: cannot start loading from {self._status.value}'
                raise InvalidTransitionError(msg)
            self._status = TileStatus.LOADING
            event = TileEvent(self.key, TileStatus.LOADING)
            listeners = list(self._listeners)
        self._notify(listeners, event)
        return True

    def set_raw(self, data: bytes) -> None:
        with self._lock:
            if self._status is TileStatus.LOADING:
                self._raw = data

    def complete(self, content: TileContent) -> bool:
        """loading -> loaded. Returns False when the result was discarded."""
        with self._lock:
            if self._discard_pending:
                self._discard_pending = False
                self._raw = None
                listeners = self._take_listeners()
                cancelled = True
            elif self._status is not TileStatus.LOADING:
                msg = f'{self.key.path}: cannot complete from {self._status.value}'
                raise InvalidTransitionError(msg)
            else:
                self._status = TileStatus.LOADED
                self._content = content
                self._raw = None
                self._error = None
                listeners = self._take_listeners()
                cancelled = False
            self._done.set()

        if cancelled:
            content.release()
            self._notify(listeners, self._cancel_event())
            return False
        self._notify(listeners, TileEvent(self.key, TileStatus.LOADED))
        return True

    def fail(self, error: TileError) -> bool:
        """loading -> error. Returns False when the tile was disposed in flight."""
        with self._lock:
            if self._discard_pending:
                self._discard_pending = False
                self._raw = None
                listeners = self._take_listeners()
                cancelled = True
            elif self._status is not TileStatus.LOADING:
                msg = f'{self.key.path}: cannot fail from {self._status.value}'
                raise InvalidTransitionError(msg)
            else:
                self._status = TileStatus.ERROR
                self._error = error
                self._raw = None
                self.attempts_left = max(0, self.attempts_left - 1)
                self.failed_at = time.monotonic()
                listeners = self._take_listeners()
                cancelled = False
            self._done.set()

        if cancelled:
            self._notify(listeners, self._cancel_event())
            return False
        self._notify(listeners, TileEvent(self.key, TileStatus.ERROR, error))
        return True

    def requeue(self) -> bool:
        """error -> queued, starting a new attempt."""
        with self._lock:
            if self._status is not TileStatus.ERROR:
                return False
            self._status = TileStatus.QUEUED
            self._error = None
            self._done.clear()
            event = TileEvent(self.key, TileStatus.QUEUED)
            listeners = list(self._listeners)
        self._notify(listeners, event)
        return True

    def retry_due(self, retry_after_sec: float, now: float | None = None) -> bool:
        """True if an errored tile may be fetched again."""
        error = self._error
        if self._status is not TileStatus.ERROR or error is None or not error.retryable:
            return False
        if self.attempts_left <= 0 or retry_after_sec < 0:
            return False
        if self.failed_at is None:
            return True
        now = time.monotonic() if now is None else now
        return now - self.failed_at >= retry_after_sec

    def dispose(self) -> None:
        """Release content and backend resources. Safe to call repeatedly."""
        with self._lock:
            if self._status is TileStatus.DISPOSED:
                return
            in_flight = self._status is TileStatus.LOADING
            unfinished = in_flight or self._status is TileStatus.QUEUED
            self._status = TileStatus.DISPOSED
            content, self._content = self._content, None
            resources = list(self._resources.values())
            self._resources.clear()
            callbacks, self._dispose_callbacks = self._dispose_callbacks, []
            if in_flight:
                # the fetch still owns the raw bytes and delivers the final event
                self._discard_pending = True
                listeners = []
            else:
                self._raw = None
                listeners = self._take_listeners()
                self._done.set()

        if content is not None:
            content.release()
        for release in resources:
            try:
                release()
            except Exception:
                logger.exception('Failed to release resource of tile %s', self.key.path)
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception('Dispose callback failed for tile %s', self.key.path)
        if listeners:
            event = self._cancel_event() if unfinished else TileEvent(self.key, TileStatus.DISPOSED)
            self._notify(listeners, event)

    # --- helpers

    def _cancel_event(self) -> TileEvent:
        return TileEvent(
            self.key,
            TileStatus.DISPOSED,
            CancelledError(f'{self.key.path} evicted before completion'),
            cancelled=True,
        )

    def _take_listeners(self) -> list[TileListener]:
        listeners, self._listeners = self._listeners, []
        return listeners

    def _notify(self, listeners: list[TileListener], event: TileEvent) -> None:
        for listener in listeners:
            self._call(listener, event)

    def _call(self, listener: TileListener, event: TileEvent) -> None:
        try:
            listener(self, event)
        except Exception:
            logger.exception('Tile listener failed for %s', self.key.path)
