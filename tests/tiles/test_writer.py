"""Tests for CacheWriter."""

import time

import pytest

from tiles.disk_cache import DiskTileCache
from tiles.key import TileKey
from tiles.writer import CacheWriter


@pytest.fixture
def store(tmp_path):
    s = DiskTileCache(tmp_path)
    yield s
    s.close()


class TestCacheWriter:
    """Tests for CacheWriter class."""

    def test_start_stop(self, store):
        writer = CacheWriter(store)
        assert not writer.is_running()
        writer.start()
        assert writer.is_running()
        writer.stop()
        assert not writer.is_running()

    def test_context_manager(self, store):
        with CacheWriter(store) as writer:
            assert writer.is_running()
        assert not writer.is_running()

    def test_put_is_written_on_stop(self, store):
        key = TileKey(100, 200, 15, 'satellite')
        with CacheWriter(store) as writer:
            assert writer.put(key, b'test data')
        assert store.get(key) == b'test data'
        assert writer.stats['written'] == 1

    def test_multiple_zooms_batched(self, store):
        with CacheWriter(store) as writer:
            for i in range(10):
                writer.put(TileKey(i, 100, 10 + i % 2, 'osm'), f'tile{i}'.encode())
        for i in range(10):
            assert store.get(TileKey(i, 100, 10 + i % 2, 'osm')) == f'tile{i}'.encode()

    def test_put_when_stopped_is_rejected(self, store):
        writer = CacheWriter(store)
        assert writer.put(TileKey(0, 0, 0, 'osm'), b'x') is False

    def test_queue_full_drops(self, store):
        writer = CacheWriter(store, max_queue_size=1)
        # running flag without a consumer so the queue fills up
        writer._running = True
        assert writer.put(TileKey(0, 0, 1, 'osm'), b'a')
        assert not writer.put(TileKey(1, 0, 1, 'osm'), b'b')
        assert writer.stats['dropped'] == 1
        writer._running = False

    def test_flushes_on_batch_timeout(self, store):
        key = TileKey(5, 5, 5, 'osm')
        with CacheWriter(store) as writer:
            writer.put(key, b'late')
            deadline = time.monotonic() + 5
            while store.get_stats().total_tiles == 0 and time.monotonic() < deadline:
                time.sleep(0.05)
            assert store.get(key) == b'late'
