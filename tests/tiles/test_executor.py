"""Tests for FetchExecutor."""

import asyncio
import threading

import pytest

from tiles.executor import FetchExecutor


async def _value(v, delay=0.0):
    await asyncio.sleep(delay)
    return v


def test_submit_runs_on_loop_thread():
    with FetchExecutor('test-loop') as executor:
        seen = {}

        async def where():
            seen['thread'] = threading.current_thread().name

        executor.submit(where()).result(timeout=2)
    assert seen['thread'] == 'test-loop'


def test_submit_returns_result():
    with FetchExecutor() as executor:
        assert executor.submit(_value(42)).result(timeout=2) == 42


def test_submit_when_stopped_raises():
    executor = FetchExecutor()
    with pytest.raises(RuntimeError):
        executor.submit(_value(1))


def test_drain_waits_for_pending():
    with FetchExecutor() as executor:
        for i in range(3):
            executor.submit(_value(i, delay=0.02))
        assert executor.drain(timeout=2)
        assert executor.pending() == 0


def test_stop_cancels_and_runs_closers():
    closed = []

    async def closer():
        closed.append(True)

    executor = FetchExecutor()
    executor.start()
    executor.on_close(closer)
    future = executor.submit(_value(1, delay=30))
    executor.stop(timeout=5)
    assert closed == [True]
    assert future.cancelled()
    assert not executor.running


def test_failed_task_is_logged(caplog):
    async def boom():
        raise ValueError('kaput')

    with FetchExecutor() as executor:
        future = executor.submit(boom())
        with pytest.raises(ValueError):
            future.result(timeout=2)
    assert 'Background task failed' in caplog.text
