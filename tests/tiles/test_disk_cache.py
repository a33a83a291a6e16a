"""Tests for the persistent DiskTileCache."""

import pytest

from tiles.disk_cache import DiskTileCache
from tiles.key import TileKey


@pytest.fixture
def store(tmp_path):
    with DiskTileCache(tmp_path / 'tiles') as s:
        yield s


def test_put_get_round_trip(store):
    key = TileKey(100, 200, 15, 'osm')
    assert store.get(key) is None
    store.put(key, b'tile bytes')
    assert store.get(key) == b'tile bytes'
    assert store.exists(key)


def test_layers_do_not_collide(store):
    store.put(TileKey(1, 1, 5, 'osm'), b'a')
    store.put(TileKey(1, 1, 5, 'carto-dark'), b'b')
    assert store.get(TileKey(1, 1, 5, 'osm')) == b'a'
    assert store.get(TileKey(1, 1, 5, 'carto-dark')) == b'b'


def test_one_database_per_zoom(store):
    store.put(TileKey(0, 0, 3, 'osm'), b'x')
    store.put(TileKey(0, 0, 4, 'osm'), b'y')
    files = sorted(p.name for p in store.cache_dir.glob('zoom_*.db'))
    assert files == ['zoom_3.db', 'zoom_4.db']


def test_put_batch_and_stats(store):
    store.put_batch(7, [(x, 0, 'osm', b'12345') for x in range(4)], fetched_at=1000)
    store.put(TileKey(0, 0, 8, 'osm'), b'123')
    stats = store.get_stats()
    assert stats.total_tiles == 5
    assert stats.total_size_bytes == 4 * 5 + 3
    assert stats.tiles_by_zoom == {7: 4, 8: 1}
    assert stats.oldest_tile == 1000


def test_delete_and_delete_layer(store):
    key = TileKey(2, 2, 6, 'osm')
    store.put(key, b'a')
    store.put(TileKey(3, 3, 9, 'osm'), b'b')
    store.put(TileKey(3, 3, 9, 'other'), b'c')
    assert store.delete(key)
    assert not store.delete(key)
    assert store.delete_layer('osm') == 1
    assert store.get(TileKey(3, 3, 9, 'other')) == b'c'


def test_cleanup_lru_frees_space(store):
    blob = b'x' * 1024
    store.put_batch(10, [(x, 0, 'osm', blob) for x in range(8)])
    freed = store.cleanup_lru(max_size_mb=4 / 1024)
    assert freed >= 4 * 1024
    assert store.get_stats().total_size_bytes <= 4 * 1024


def test_cleanup_lru_noop_under_budget(store):
    store.put(TileKey(0, 0, 1, 'osm'), b'small')
    assert store.cleanup_lru(max_size_mb=1) == 0


def test_clear_zoom(store):
    store.put_batch(5, [(x, 1, 'osm', b'd') for x in range(3)])
    assert store.clear_zoom(5) == 3
    assert not (store.cache_dir / 'zoom_5.db').exists()
    assert store.clear_zoom(11) == 0
