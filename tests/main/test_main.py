"""Tests for the command line entry point."""

import argparse
import logging

import pytest
from PIL import Image

import main
from domain.models import LayerConfig
from providers.sources import ProviderRegistry
from services.map_engine import MapEngine
from services.settings_service import SettingsService
from tiles.errors import NetworkError


class FakeTransport:
    def __init__(self, payload, fail=False):
        self.payload = payload
        self.fail = fail

    async def fetch(self, url):
        if self.fail:
            raise NetworkError('HTTP 500', status=500)
        return self.payload


@pytest.fixture
def quiet_main(monkeypatch):
    monkeypatch.setattr(main, 'setup_logging', lambda *a, **kw: None)
    monkeypatch.setattr(main, 'load_secrets', lambda: None)


def _patch_engine(monkeypatch, payload, fail=False):
    registry = ProviderRegistry(
        [LayerConfig(id='base', url_template='https://base.test/{z}/{x}/{y}.png')],
        builtins=False,
    )

    def factory(settings):
        settings = settings.model_copy(update={'retry_after_sec': -1, 'download_attempts': 1})
        return MapEngine(settings, transport=FakeTransport(payload, fail), registry=registry)

    monkeypatch.setattr(main, 'MapEngine', factory)


def test_setup_logging_creates_log_file(tmp_path):
    log_file = main.setup_logging(logging.INFO, tmp_path / 'log')
    assert log_file == tmp_path / 'log' / 'tilemapper.log'
    assert log_file.exists()


def test_parser_defaults():
    args = main.build_parser().parse_args([])
    assert args.out == 'map.png'
    assert args.marker == []
    assert args.overlay is None
    assert args.timeout == 60.0


def test_resolve_settings_applies_overrides(tmp_path):
    service = SettingsService(tmp_path)
    args = main.build_parser().parse_args(
        ['--lon', '10.5', '--lat', '-20', '--zoom', '7', '--layer', 'base', '--overlay', 'a', '--overlay', 'b']
    )
    settings = main.resolve_settings(args, service)
    assert settings.lon == 10.5
    assert settings.lat == -20.0
    assert settings.zoom == 7
    assert settings.layer_id == 'base'
    assert settings.overlays == ['a', 'b']


def test_resolve_settings_from_profile(tmp_path):
    service = SettingsService(tmp_path)
    service.save('city', {'zoom': 12, 'width': 300})
    args = main.build_parser().parse_args(['--profile', 'city', '--width', '640'])
    settings = main.resolve_settings(args, service)
    assert settings.zoom == 12
    assert settings.width == 640


def test_parse_marker():
    point = main.parse_marker('30.5,50.25')
    assert (point.lon, point.lat) == (30.5, 50.25)
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_marker('30.5')
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_marker('east,north')


def test_main_renders_snapshot(tmp_path, monkeypatch, quiet_main, png_bytes):
    _patch_engine(monkeypatch, png_bytes)
    out = tmp_path / 'out' / 'map.png'
    code = main.main(
        [
            '--profiles-dir', str(tmp_path / 'profiles'),
            '--layer', 'base',
            '--zoom', '2',
            '--width', '320',
            '--height', '200',
            '--marker', '0,0',
            '-o', str(out),
        ]
    )
    assert code == 0
    with Image.open(out) as img:
        assert img.size == (320, 200)


def test_main_saves_profile(tmp_path, monkeypatch, quiet_main, png_bytes):
    _patch_engine(monkeypatch, png_bytes)
    profiles = tmp_path / 'profiles'
    code = main.main(
        [
            '--profiles-dir', str(profiles),
            '--layer', 'base',
            '--zoom', '1',
            '--save-profile', 'snap',
            '-o', str(tmp_path / 'map.png'),
        ]
    )
    assert code == 0
    assert SettingsService(profiles).load('snap').zoom == 1


def test_main_failed_tiles_still_produce_snapshot(tmp_path, monkeypatch, quiet_main, png_bytes):
    _patch_engine(monkeypatch, png_bytes, fail=True)
    code = main.main(
        ['--profiles-dir', str(tmp_path), '--layer', 'base', '--zoom', '1', '-o', str(tmp_path / 'map.png')]
    )
    assert code == 0
    assert (tmp_path / 'map.png').exists()


def test_main_bad_marker(tmp_path, quiet_main):
    code = main.main(['--profiles-dir', str(tmp_path), '--marker', 'nowhere'])
    assert code == 2


def test_main_missing_profile(tmp_path, quiet_main):
    code = main.main(['--profiles-dir', str(tmp_path), '--profile', 'ghost'])
    assert code == 2


def test_main_unknown_layer(tmp_path, monkeypatch, quiet_main, png_bytes):
    _patch_engine(monkeypatch, png_bytes)
    code = main.main(['--profiles-dir', str(tmp_path), '--layer', 'missing', '-o', str(tmp_path / 'x.png')])
    assert code == 2
