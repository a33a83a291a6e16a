"""Tests for URL template expansion."""

import random

import pytest

from domain.models import LayerConfig
from providers.keys import KeyManager
from providers.urls import build_url, template_tokens
from tiles.errors import ConfigurationError
from tiles.key import TileKey

KEY = TileKey(3, 5, 7, 'osm')


def test_grid_tokens():
    assert build_url('https://x/{z}/{x}/{y}', KEY) == 'https://x/7/3/5'
    assert build_url('https://x/{zoom}/{x}/{y}.png', KEY) == 'https://x/7/3/5.png'


def test_tokens_are_case_insensitive():
    assert build_url('https://x/{Z}/{X}/{Y}', KEY) == 'https://x/7/3/5'


def test_quadkey_token():
    assert build_url('https://t.test/a{quad}.jpeg', TileKey(3, 5, 3)) == 'https://t.test/a213.jpeg'


def test_random_subdomain_in_range():
    rng = random.Random(1)
    seen = {build_url('https://t{rnd0-3}.test/{z}', KEY, rng=rng)[9] for _ in range(50)}
    assert seen <= {'0', '1', '2', '3'}
    assert len(seen) > 1


def test_layer_extras():
    layer = LayerConfig(
        id='arc',
        url_template='https://s/{variant}/{z}/{y}/{x}?mkt={lng}',
        extra={'variant': 'World_Imagery', 'lng': 'en-US'},
    )
    assert build_url(layer.url_template, KEY, layer=layer) == 'https://s/World_Imagery/7/5/3?mkt=en-US'


def test_required_credential_substituted():
    layer = LayerConfig(id='mb', url_template='https://m/{z}/{x}/{y}?access_token={accesstoken}', credentials=('accesstoken',))
    keys = KeyManager({'accesstoken': 'tok'}, env={})
    assert build_url(layer.url_template, KEY, layer=layer, keys=keys).endswith('access_token=tok')


def test_missing_required_credential_raises():
    layer = LayerConfig(id='mb', url_template='https://m/{z}?k={apikey}', credentials=('apikey',))
    with pytest.raises(ConfigurationError):
        build_url(layer.url_template, KEY, layer=layer, keys=KeyManager(env={}))
    with pytest.raises(ConfigurationError):
        build_url(layer.url_template, KEY, layer=layer)


def test_optional_credential_token_left_when_unknown():
    url = build_url('https://m/{z}?key={key}', KEY, keys=KeyManager(env={}))
    assert url == 'https://m/7?key={key}'


def test_unknown_tokens_pass_through():
    assert build_url('https://x/{z}/{style}/{x}/{y}', KEY) == 'https://x/7/{style}/3/5'


def test_resolver_wins():
    def resolver(key, token):
        return 'R' if token == 'x' else None

    assert build_url('https://x/{z}/{x}/{y}', KEY, resolver=resolver) == 'https://x/7/R/5'


def test_empty_template_raises():
    with pytest.raises(ConfigurationError):
        build_url('', KEY)


def test_template_tokens():
    assert template_tokens('https://{rnd0-3}.t/{Z}/{x}/{y}?k={apikey}') == {'z', 'x', 'y', 'apikey'}
