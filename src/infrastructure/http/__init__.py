"""HTTP client infrastructure."""
from infrastructure.http.client import (
    HttpTransport,
    cleanup_sqlite_cache,
    make_http_session,
    redact_url,
    resolve_cache_dir,
)

__all__ = [
    'HttpTransport',
    'cleanup_sqlite_cache',
    'make_http_session',
    'redact_url',
    'resolve_cache_dir',
]
