"""Failure reasons recorded on tiles."""

from __future__ import annotations


class TileError(Exception):
    """Base class for tile fetch and decode failures."""

    retryable = True


class NetworkError(TileError):
    """Transport failure; ``status`` is the HTTP status code when known."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DecodeError(TileError):
    """Payload could not be decompressed or parsed."""


class ConfigurationError(TileError):
    """Missing credential, unknown layer or broken URL template."""

    retryable = False


class CancelledError(TileError):
    """Tile was evicted while its fetch was in flight."""

    retryable = False
