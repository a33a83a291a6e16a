"""Tests for credential lookup."""

import pytest

from providers.keys import KeyManager, load_secrets
from tiles.errors import ConfigurationError


def test_explicit_wins_over_env():
    keys = KeyManager({'ApiKey': 'explicit'}, env={'TILEMAPPER_APIKEY': 'env'})
    assert keys.get('apikey') == 'explicit'
    assert keys.get('APIKEY') == 'explicit'


def test_prefixed_env_and_aliases():
    assert KeyManager(env={'TILEMAPPER_APIKEY': ' e1 '}).get('apikey') == 'e1'
    assert KeyManager(env={'MAPBOX_ACCESS_TOKEN': 'mb'}).get('accesstoken') == 'mb'
    assert KeyManager(env={'API_KEY': 'generic'}).get('apikey') == 'generic'


def test_blank_values_ignored():
    keys = KeyManager({'apikey': ''}, env={'TILEMAPPER_APIKEY': '  '})
    assert keys.get('apikey') is None
    assert 'apikey' not in keys


def test_require_raises_with_hint():
    with pytest.raises(ConfigurationError, match='TILEMAPPER_APIKEY'):
        KeyManager(env={}).require('apikey', layer_id='here')


def test_set_and_unset():
    keys = KeyManager(env={})
    keys.set('token', 'abc')
    assert keys.has('token')
    keys.set('token', None)
    assert not keys.has('token')


def test_load_secrets_reads_first_existing(tmp_path, monkeypatch):
    monkeypatch.delenv('TILEMAPPER_TESTVAR', raising=False)
    env_file = tmp_path / '.env'
    env_file.write_text('TILEMAPPER_TESTVAR=from-file\n', encoding='utf-8')
    found = load_secrets([tmp_path / '.secrets.env', env_file])
    assert found == env_file
    assert KeyManager().get('testvar') == 'from-file'
    monkeypatch.delenv('TILEMAPPER_TESTVAR', raising=False)


def test_load_secrets_none_found(tmp_path):
    assert load_secrets([tmp_path / 'missing.env']) is None
