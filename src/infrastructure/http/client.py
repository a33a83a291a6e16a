from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import ssl
from datetime import timedelta
from http import HTTPStatus
from pathlib import Path
from urllib.parse import urlsplit

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_5XX_MAX,
    HTTP_5XX_MIN,
    HTTP_BACKOFF_FACTOR,
    HTTP_CACHE_ENABLED,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_CACHE_RESPECT_HEADERS,
    HTTP_CACHE_STALE_IF_ERROR_HOURS,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    HTTP_USER_AGENT,
    TILE_DISK_CACHE_DIR,
)
from tiles.errors import ConfigurationError, NetworkError

logger = logging.getLogger(__name__)

HTTP_CACHE_FILE = 'http_cache.sqlite'


def resolve_cache_dir(cache_dir: str | Path | None = None) -> Path:
    """Directory for the HTTP response cache, next to the tile store by default."""
    if cache_dir:
        return Path(cache_dir).expanduser().resolve()
    return (Path(TILE_DISK_CACHE_DIR).parent / 'http').resolve()


def cleanup_sqlite_cache(cache_dir: Path) -> None:
    """Checkpoint the WAL of the response cache so the file can be moved or removed."""
    cache_file = cache_dir / HTTP_CACHE_FILE
    if cache_file.exists():
        conn = sqlite3.connect(cache_file)
        try:
            conn.execute('PRAGMA wal_checkpoint(TRUNCATE);')
        finally:
            conn.close()


def redact_url(url: str) -> str:
    """Drop the query string, which may carry credentials."""
    parts = urlsplit(url)
    return f'{parts.scheme}://{parts.netloc}{parts.path}'


def make_http_session(
    cache_dir: Path | None,
    *,
    use_cache: bool = HTTP_CACHE_ENABLED,
    expire_hours: int = HTTP_CACHE_EXPIRE_HOURS,
    user_agent: str = HTTP_USER_AGENT,
) -> aiohttp.ClientSession:
    # SSL context from certifi bundle
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    headers = {'User-Agent': user_agent}

    if use_cache and cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = cache_dir / HTTP_CACHE_FILE
        if not cache_path.exists():
            with contextlib.closing(sqlite3.connect(cache_path)) as conn:
                conn.execute('PRAGMA journal_mode=WAL;')
        expire_td = timedelta(hours=max(0, int(expire_hours)))
        stale_hours = int(HTTP_CACHE_STALE_IF_ERROR_HOURS)
        stale_param: bool | timedelta
        stale_param = timedelta(hours=stale_hours) if stale_hours > 0 else False
        backend = SQLiteBackend(str(cache_path), expire_after=expire_td)
        logger.info('HTTP response cache at %s', cache_path)
        return CachedSession(
            cache=backend,
            connector=connector,
            headers=headers,
            expire_after=expire_td,
            cache_control=bool(HTTP_CACHE_RESPECT_HEADERS),
            stale_if_error=stale_param,
        )
    return aiohttp.ClientSession(connector=connector, headers=headers)


class HttpTransport:
    """Tile transport over aiohttp.

    - 200 returns the body bytes;
    - 401/403 mean a bad or missing credential and raise ConfigurationError;
    - 404 raises NetworkError at once;
    - 429/5xx and connection errors are retried with exponential backoff.

    The session is created lazily so it binds to the loop that first fetches.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        cache_dir: Path | None = None,
        use_cache: bool = HTTP_CACHE_ENABLED,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        retries: int = HTTP_RETRIES_DEFAULT,
        backoff: float = HTTP_BACKOFF_FACTOR,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._cache_dir = cache_dir
        self._use_cache = use_cache
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = make_http_session(self._cache_dir, use_cache=self._use_cache)
        return self._session

    async def fetch(self, url: str) -> bytes:
        client = self._get_session()
        path = redact_url(url)
        last_exc: NetworkError | None = None

        for attempt in range(self.retries):
            if attempt:
                await asyncio.sleep(self.backoff**attempt if self.backoff > 0 else 0)
            try:
                resp = await client.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout))
            except (aiohttp.ClientError, TimeoutError) as e:
                last_exc = NetworkError(f'Request failed for {path}: {e}')
                logger.debug('Attempt %d for %s failed: %s', attempt + 1, path, e)
                continue
            try:
                sc = resp.status
                if sc == HTTPStatus.OK:
                    return await resp.read()
                if sc in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
                    msg = f'Access denied (HTTP {sc}) for {path}; check the layer credentials'
                    raise ConfigurationError(msg)
                if sc == HTTPStatus.NOT_FOUND:
                    msg = f'Tile not found (HTTP 404) at {path}'
                    raise NetworkError(msg, status=sc)
                if sc == HTTPStatus.TOO_MANY_REQUESTS or HTTP_5XX_MIN <= sc < HTTP_5XX_MAX:
                    last_exc = NetworkError(f'HTTP {sc} for {path}', status=sc)
                    logger.debug('Attempt %d for %s got HTTP %d', attempt + 1, path, sc)
                    continue
                msg = f'Unexpected HTTP {sc} for {path}'
                raise NetworkError(msg, status=sc)
            except (aiohttp.ClientError, TimeoutError) as e:
                last_exc = NetworkError(f'Reading body of {path} failed: {e}')
            finally:
                # release both aiohttp and cached responses
                try:
                    close = getattr(resp, 'close', None)
                    if callable(close):
                        close()
                    release = getattr(resp, 'release', None)
                    if callable(release):
                        release()
                except Exception as e:
                    logger.debug('Failed to cleanup HTTP response: %s', e, exc_info=True)

        if last_exc is None:
            last_exc = NetworkError(f'No attempts made for {path}')
        raise last_exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
