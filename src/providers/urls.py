"""Tile URL templates.

A template carries ``{token}`` placeholders, matched case-insensitively::

    https://a.tile.openstreetmap.org/{zoom}/{x}/{y}.png
    https://t{rnd0-4}.tiles.virtualearth.net/tiles/a{quad}.jpeg?mkt={lng}

Resolution order for each token: caller resolver, grid tokens
(``zoom``/``z``, ``x``, ``y``, ``quad``), the layer's ``extra`` map,
credentials named by the layer. ``{rndA-B}`` becomes a random integer in
[A, B]. Tokens nobody recognizes are left in place, braces included.
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from tiles.errors import ConfigurationError

if TYPE_CHECKING:
    from domain.models import LayerConfig
    from providers.keys import KeyManager
    from tiles.key import TileKey

TOKEN_RE = re.compile(r'\{(\w+)\}')
RND_RE = re.compile(r'\{rnd(\d+)-(\d+)\}', re.IGNORECASE)

# Credential tokens every provider understands
CREDENTIAL_TOKENS = frozenset({'apikey', 'accesstoken', 'key', 'token'})

TokenResolver = Callable[['TileKey', str], 'str | None']


def grid_token(key: TileKey, token: str) -> str | None:
    if token in ('zoom', 'z'):
        return str(key.zoom)
    if token == 'x':
        return str(key.x)
    if token == 'y':
        return str(key.y)
    if token == 'quad':
        return key.quadkey
    return None


def template_tokens(template: str) -> set[str]:
    """Lower-cased token names used by a template, excluding ``rnd`` ranges."""
    return {m.group(1).lower() for m in TOKEN_RE.finditer(template)}


def build_url(
    template: str,
    key: TileKey,
    *,
    layer: LayerConfig | None = None,
    keys: KeyManager | None = None,
    resolver: TokenResolver | None = None,
    rng: random.Random | None = None,
) -> str:
    """Substitute tile tokens into ``template``.

    Args:
        template: URL with ``{token}`` placeholders.
        key: Tile being requested.
        layer: Supplies extras and the credential names it requires.
        keys: Credential source for credential tokens.
        resolver: Consulted first for every token; None falls through.
        rng: Random source for ``{rndA-B}``.

    Returns:
        The request URL.

    Raises:
        ConfigurationError: The template is empty or a required credential
            is missing.
    """
    if not template:
        layer_id = layer.id if layer is not None else key.layer_id
        msg = f'Layer {layer_id!r} has no URL template'
        raise ConfigurationError(msg)

    extra = {k.lower(): v for k, v in layer.extra.items()} if layer is not None else {}
    required = set(layer.credentials) if layer is not None else set()
    layer_id = layer.id if layer is not None else key.layer_id

    def replace(match: re.Match[str]) -> str:
        token = match.group(1).lower()
        if resolver is not None:
            value = resolver(key, token)
            if value is not None:
                return value
        value = grid_token(key, token)
        if value is not None:
            return value
        if token in extra:
            return extra[token]
        if token in required or token in CREDENTIAL_TOKENS:
            if keys is None:
                if token in required:
                    msg = f'Layer {layer_id!r} needs credential {token!r} but no key manager is configured'
                    raise ConfigurationError(msg)
                return match.group(0)
            if token in required:
                return keys.require(token, layer_id=layer_id)
            value = keys.get(token)
            if value is not None:
                return value
        return match.group(0)

    url = TOKEN_RE.sub(replace, template)

    rand = rng or random
    return RND_RE.sub(lambda m: str(rand.randint(int(m.group(1)), int(m.group(2)))), url)
