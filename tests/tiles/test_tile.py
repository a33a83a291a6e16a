"""Tests for the Tile lifecycle."""

import logging
import threading

import pytest

from tiles.content import RasterContent
from tiles.errors import CancelledError, ConfigurationError, NetworkError
from tiles.key import TileKey
from tiles.tile import InvalidTransitionError, Tile, TileStatus


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, tile, event):
        self.events.append(event)

    @property
    def statuses(self):
        return [e.status for e in self.events]


def _content():
    from PIL import Image

    return RasterContent(Image.new('RGBA', (4, 4)))


@pytest.fixture
def tile():
    return Tile(TileKey(3, 5, 7, 'osm'), attempts=2)


def test_happy_path(tile):
    rec = Recorder()
    tile.subscribe(rec)
    assert tile.status is TileStatus.QUEUED

    assert tile.mark_loading()
    tile.set_raw(b'abc')
    assert tile.raw == b'abc'
    assert tile.complete(_content())

    assert tile.is_loaded
    assert tile.raw is None
    assert tile.size_bytes == 4 * 4 * 4
    assert rec.statuses == [TileStatus.LOADING, TileStatus.LOADED]
    assert tile.wait(0)


def test_subscribe_after_terminal_fires_immediately(tile):
    tile.mark_loading()
    tile.complete(_content())
    rec = Recorder()
    tile.subscribe(rec)
    assert rec.statuses == [TileStatus.LOADED]


def test_unsubscribe_stops_notifications(tile):
    rec = Recorder()
    tile.subscribe(rec)
    tile.mark_loading()
    tile.unsubscribe(rec)
    tile.unsubscribe(rec)
    tile.complete(_content())
    assert rec.statuses == [TileStatus.LOADING]


def test_listeners_fire_once_per_terminal_event(tile):
    rec = Recorder()
    tile.subscribe(rec)
    tile.mark_loading()
    tile.fail(NetworkError('boom'))
    tile.dispose()
    # listeners were taken by the error event
    assert rec.statuses == [TileStatus.LOADING, TileStatus.ERROR]


def test_fail_records_error_and_attempts(tile):
    tile.mark_loading()
    err = NetworkError('timeout')
    assert tile.fail(err)
    assert tile.status is TileStatus.ERROR
    assert tile.error is err
    assert tile.attempts_left == 1
    assert tile.failed_at is not None


def test_invalid_transitions(tile):
    with pytest.raises(InvalidTransitionError):
        tile.complete(_content())
    tile.mark_loading()
    with pytest.raises(InvalidTransitionError):
        tile.mark_loading()


def test_requeue_only_from_error(tile):
    assert not tile.requeue()
    tile.mark_loading()
    tile.fail(NetworkError('x'))
    assert tile.requeue()
    assert tile.status is TileStatus.QUEUED
    assert tile.error is None
    assert not tile.wait(0)


def test_retry_due(tile):
    tile.mark_loading()
    tile.fail(NetworkError('x'))
    failed_at = tile.failed_at
    assert not tile.retry_due(10.0, now=failed_at + 5)
    assert tile.retry_due(10.0, now=failed_at + 10)
    assert not tile.retry_due(-1.0, now=failed_at + 100)


def test_retry_not_due_for_configuration_errors(tile):
    tile.mark_loading()
    tile.fail(ConfigurationError('no key'))
    assert not tile.retry_due(0.0, now=tile.failed_at + 100)


def test_retry_not_due_when_attempts_exhausted():
    tile = Tile(TileKey(0, 0, 0), attempts=1)
    tile.mark_loading()
    tile.fail(NetworkError('x'))
    assert tile.attempts_left == 0
    assert not tile.retry_due(0.0, now=tile.failed_at + 100)


def test_dispose_releases_content_and_resources(tile):
    content = _content()
    tile.mark_loading()
    tile.complete(content)
    released = []
    tile.attach_resource('gpu', lambda: released.append('gpu'))
    tile.on_disposed(lambda t: released.append('cb'))

    tile.dispose()
    tile.dispose()

    assert tile.is_disposed
    assert tile.content is None
    assert content.image is None
    assert released == ['gpu', 'cb']


def test_attach_after_dispose_releases_at_once(tile):
    tile.dispose()
    released = []
    tile.attach_resource('late', lambda: released.append(1))
    tile.on_disposed(lambda t: released.append(2))
    assert released == [1, 2]


def test_dispose_while_loading_discards_result(tile):
    rec = Recorder()
    tile.subscribe(rec)
    tile.mark_loading()
    tile.dispose()

    assert tile.is_disposed
    assert tile.discard_pending
    assert rec.statuses == [TileStatus.LOADING]

    content = _content()
    assert not tile.complete(content)
    assert content.image is None
    assert not tile.discard_pending
    assert rec.statuses == [TileStatus.LOADING, TileStatus.DISPOSED]
    last = rec.events[-1]
    assert last.cancelled
    assert isinstance(last.error, CancelledError)
    assert tile.content is None


def test_dispose_while_loading_then_fail(tile):
    rec = Recorder()
    tile.subscribe(rec)
    tile.mark_loading()
    tile.dispose()
    assert not tile.fail(NetworkError('late'))
    assert rec.events[-1].cancelled
    assert tile.status is TileStatus.DISPOSED


def test_mark_loading_after_dispose_returns_false(tile):
    tile.dispose()
    assert not tile.mark_loading()


def test_failing_listener_is_logged_and_isolated(tile, caplog):
    rec = Recorder()

    def bad(t, e):
        raise ValueError('listener bug')

    tile.subscribe(bad)
    tile.subscribe(rec)
    with caplog.at_level(logging.ERROR):
        tile.mark_loading()
    assert rec.statuses == [TileStatus.LOADING]
    assert 'Tile listener failed' in caplog.text


def test_wait_blocks_until_terminal(tile):
    tile.mark_loading()
    threading.Timer(0.05, lambda: tile.complete(_content())).start()
    assert tile.wait(2.0)
    assert tile.is_loaded
