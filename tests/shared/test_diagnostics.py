"""Tests for shared.diagnostics helpers."""

import logging
from types import SimpleNamespace

import psutil
import pytest

import shared.diagnostics as diagnostics


def test_get_memory_info_direct():
    info = diagnostics.get_memory_info()
    assert 'process_rss_mb' in info


def test_get_thread_info_direct():
    info = diagnostics.get_thread_info()
    assert info['active_count'] >= 1
    assert 'MainThread' in info['thread_names']


def test_get_memory_info_with_fake_psutil(monkeypatch):
    """get_memory_info converts byte counts to MB."""

    class DummyProcess:
        def memory_info(self):
            return SimpleNamespace(rss=1024 * 1024, vms=2 * 1024 * 1024)

        def memory_percent(self):
            return 12.5

    monkeypatch.setattr(diagnostics.psutil, 'Process', lambda: DummyProcess())
    monkeypatch.setattr(
        diagnostics.psutil,
        'virtual_memory',
        lambda: SimpleNamespace(total=10 * 1024 * 1024, available=4 * 1024 * 1024, percent=60),
    )

    info = diagnostics.get_memory_info()

    assert info['process_rss_mb'] == 1.0
    assert info['process_vms_mb'] == 2.0
    assert info['system_total_mb'] == 10.0
    assert info['system_available_mb'] == 4.0
    assert info['process_memory_percent'] == 12.5


def test_get_memory_info_reports_psutil_error(monkeypatch):
    def boom():
        raise psutil.AccessDenied()

    monkeypatch.setattr(diagnostics.psutil, 'Process', boom)
    info = diagnostics.get_memory_info()
    assert 'error' in info


def test_get_thread_info_without_system_threads(monkeypatch):
    def boom():
        raise psutil.NoSuchProcess(1)

    monkeypatch.setattr(diagnostics.psutil, 'Process', boom)
    info = diagnostics.get_thread_info()
    assert 'system_threads' not in info
    assert info['active_count'] >= 1


def test_log_helpers(monkeypatch, caplog):
    """Logging helpers should emit diagnostic lines."""
    monkeypatch.setattr(diagnostics, 'get_memory_info', lambda: {'process_rss_mb': 1, 'system_available_mb': 2})
    monkeypatch.setattr(diagnostics, 'get_thread_info', lambda: {'active_count': 2, 'system_threads': 3})

    with caplog.at_level(logging.INFO):
        diagnostics.log_memory_usage('ctx')
        diagnostics.log_thread_status('ctx')

    assert 'Memory usage (ctx): RSS=1MB, Available=2MB' in caplog.text
    assert 'Thread status (ctx): Active=2, System=3' in caplog.text


def test_log_memory_usage_skipped_when_disabled(monkeypatch, caplog):
    calls = []
    monkeypatch.setattr(diagnostics, 'get_memory_info', lambda: calls.append(1) or {})
    with caplog.at_level(logging.INFO, logger='shared.diagnostics'):
        diagnostics.log_memory_usage('quiet', logging.DEBUG)
    assert calls == []
    assert caplog.text == ''


def test_log_comprehensive_diagnostics(caplog):
    with caplog.at_level(logging.INFO):
        diagnostics.log_comprehensive_diagnostics('test op', extra={'tiles': 42})
    text = caplog.text
    assert 'DIAGNOSTIC INFO: TEST OP' in text
    assert 'tiles: 42' in text
    assert 'END DIAGNOSTIC INFO: TEST OP' in text


def test_resource_monitor_logs_duration(monkeypatch, caplog):
    rss = iter([10.0, 12.5])
    monkeypatch.setattr(diagnostics, 'get_memory_info', lambda: {'process_rss_mb': next(rss, 12.5)})

    with caplog.at_level(logging.INFO), diagnostics.ResourceMonitor('JOB'):
        pass

    assert "Operation 'JOB' completed" in caplog.text
    assert '+2.50' in caplog.text


def test_resource_monitor_logs_failure(caplog):
    with caplog.at_level(logging.INFO), pytest.raises(ValueError):
        with diagnostics.ResourceMonitor('BROKEN'):
            raise ValueError('bad input')

    assert "Operation 'BROKEN' failed with ValueError: bad input" in caplog.text
