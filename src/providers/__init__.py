"""Tile providers: layer registry, URL templates and credentials."""

from providers.keys import KeyManager, load_secrets
from providers.sources import BUILTIN_LAYERS, ProviderRegistry
from providers.urls import build_url, template_tokens

__all__ = [
    'BUILTIN_LAYERS',
    'KeyManager',
    'ProviderRegistry',
    'build_url',
    'load_secrets',
    'template_tokens',
]
