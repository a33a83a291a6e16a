"""Tests for the provider registry."""

import pytest

from domain.models import LayerConfig
from providers.sources import BUILTIN_LAYERS, ProviderRegistry
from tiles.errors import ConfigurationError


def test_builtins_present():
    registry = ProviderRegistry()
    assert 'osm' in registry
    assert len(registry) == len(BUILTIN_LAYERS)
    assert registry.get('osm').url_template.startswith('https://')


def test_builtin_ids_unique():
    ids = [layer.id for layer in BUILTIN_LAYERS]
    assert len(ids) == len(set(ids))


def test_unknown_layer_raises():
    with pytest.raises(ConfigurationError):
        ProviderRegistry().get('does-not-exist')
    assert ProviderRegistry().find('does-not-exist') is None


def test_user_layers_override_builtins():
    custom = LayerConfig(id='osm', url_template='https://mirror/{z}/{x}/{y}.png')
    registry = ProviderRegistry([custom])
    assert registry.get('osm').url_template == 'https://mirror/{z}/{x}/{y}.png'


def test_register_replace_notifies():
    registry = ProviderRegistry(builtins=False)
    changed = []
    registry.on_change(changed.append)
    registry.register(LayerConfig(id='a', url_template='https://a/{z}/{x}/{y}'))
    assert changed == []
    registry.register(LayerConfig(id='a', url_template='https://b/{z}/{x}/{y}'))
    assert changed == ['a']
    assert registry.unregister('a')
    assert changed == ['a', 'a']
    assert not registry.unregister('a')


def test_base_layers_and_overlays():
    registry = ProviderRegistry()
    assert all(not layer.overlay for layer in registry.base_layers())
    assert any(layer.id.startswith('traffic-') for layer in registry.overlays())
