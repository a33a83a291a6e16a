"""Credentials for tile providers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from tiles.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = 'TILEMAPPER_'

# Conventional variable names checked after the prefixed one
ENV_ALIASES: dict[str, tuple[str, ...]] = {
    'accesstoken': ('MAPBOX_ACCESS_TOKEN', 'API_KEY'),
    'apikey': ('API_KEY',),
}


def load_secrets(candidates: Iterable[Path] | None = None) -> Path | None:
    """Load the first existing .secrets.env/.env file into the environment."""
    if candidates is None:
        repo_root = Path(__file__).resolve().parent.parent.parent
        candidates = [
            Path('.secrets.env'),
            Path('.env'),
            repo_root / '.secrets.env',
            repo_root / '.env',
        ]
    for p in candidates:
        if p.exists():
            load_dotenv(p)
            logger.info('Loaded secrets from %s', p)
            return p
    return None


class KeyManager:
    """Resolves credential names (``accesstoken``, ``apikey``, ...) to values.

    Explicit values win over the environment. Names are case-insensitive.
    """

    def __init__(
        self,
        explicit: Mapping[str, str] | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._explicit = {k.lower(): v for k, v in (explicit or {}).items() if v}
        self._env = env if env is not None else os.environ

    def _env_names(self, name: str) -> tuple[str, ...]:
        return (f'{ENV_PREFIX}{name.upper()}', *ENV_ALIASES.get(name, ()))

    def get(self, name: str) -> str | None:
        name = name.lower()
        value = self._explicit.get(name)
        if value:
            return value
        for env_name in self._env_names(name):
            value = (self._env.get(env_name) or '').strip()
            if value:
                return value
        return None

    def require(self, name: str, *, layer_id: str | None = None) -> str:
        value = self.get(name)
        if value is None:
            where = f' for layer {layer_id}' if layer_id else ''
            msg = f'Missing credential {name!r}{where}; set {self._env_names(name.lower())[0]}'
            raise ConfigurationError(msg)
        return value

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def set(self, name: str, value: str | None) -> None:
        name = name.lower()
        if value:
            self._explicit[name] = value
        else:
            self._explicit.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)
