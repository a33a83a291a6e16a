"""Tests for BufferDrawer and the shared drawer lifecycle."""

import pytest
from PIL import Image

from domain.view_state import ViewState
from geo.points import GeoPoint
from render.buffer_drawer import BufferDrawer
from render.drawer import DrawerState, Ray, StaleDrawerError
from render.elements import ElementManager, Marker
from tiles.cache import TileCache
from tiles.content import RasterContent
from tiles.errors import NetworkError
from tiles.key import TileKey


def _loaded(cache, key, color=(255, 0, 0, 255), size=256):
    tile = cache.request_tile(key)
    tile.mark_loading()
    tile.complete(RasterContent(Image.new('RGBA', (size, size), color)))
    return tile


@pytest.fixture
def view():
    v = ViewState(512, 512, zoom=2)
    v.set_center_tile(2.0, 2.0)
    return v


@pytest.fixture
def cache():
    return TileCache(lambda tile: None)


def test_draw_with_no_tiles_is_background(view, cache):
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    assert drawer.image.size == (512, 512)
    assert drawer.image.getpixel((256, 256)) == (0, 0, 0, 0)
    assert drawer.tiles_composited == 0


def test_partial_coverage_leaves_gaps(view, cache):
    _loaded(cache, TileKey(1, 1, 2, 'osm'), (255, 0, 0, 255))
    cache.request_tile(TileKey(2, 2, 2, 'osm'))  # still queued
    errored = cache.request_tile(TileKey(2, 1, 2, 'osm'))
    errored.mark_loading()
    errored.fail(NetworkError('x'))

    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    img = drawer.image
    assert img.getpixel((10, 10)) == (255, 0, 0, 255)
    assert img.getpixel((300, 10)) == (0, 0, 0, 0)
    assert img.getpixel((300, 300)) == (0, 0, 0, 0)
    assert drawer.tiles_composited == 1


def test_overlay_drawn_above_base(view, cache):
    _loaded(cache, TileKey(1, 1, 2, 'base'), (255, 0, 0, 255))
    _loaded(cache, TileKey(1, 1, 2, 'traffic'), (0, 0, 255, 255))
    drawer = BufferDrawer(view, cache, ['base', 'traffic'])
    drawer.draw()
    assert drawer.image.getpixel((10, 10)) == (0, 0, 255, 255)


def test_transparent_overlay_keeps_base(view, cache):
    _loaded(cache, TileKey(1, 1, 2, 'base'), (255, 0, 0, 255))
    _loaded(cache, TileKey(1, 1, 2, 'traffic'), (0, 0, 0, 0))
    drawer = BufferDrawer(view, cache, ['base', 'traffic'])
    drawer.draw()
    assert drawer.image.getpixel((10, 10)) == (255, 0, 0, 255)


def test_offscreen_tile_partially_visible(cache):
    view = ViewState(256, 256, zoom=2)
    view.set_center_tile(1.75, 1.75)
    _loaded(cache, TileKey(1, 1, 2, 'osm'), (0, 255, 0, 255))
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    # tile (1,1) spans screen [-64, 192)
    assert drawer.image.getpixel((0, 0)) == (0, 255, 0, 255)
    assert drawer.image.getpixel((200, 200)) == (0, 0, 0, 0)


def test_scaled_tile_cached_and_released_with_tile(view, cache):
    tile = _loaded(cache, TileKey(1, 1, 2, 'osm'), size=512)
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    assert len(drawer._scaled) == 1
    drawer.draw()
    assert len(drawer._scaled) == 1
    tile.dispose()
    assert drawer._scaled == {}


def test_elements_drawn_on_top(view, cache):
    markers = ElementManager(Marker)
    markers.create(view.screen_to_location(256, 256), size=20, color=(0, 255, 0, 255))
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.add_element_manager(markers)
    drawer.draw()
    assert drawer.image.getpixel((256, 256)) == (0, 255, 0, 255)


def test_raycast_reports_pixel_color_and_element(view, cache):
    _loaded(cache, TileKey(1, 1, 2, 'osm'), (255, 0, 0, 255))
    markers = ElementManager(Marker)
    marker = markers.create(view.screen_to_location(100, 100), size=10)
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.add_element_manager(markers)
    drawer.draw()

    hit = drawer.raycast(Ray.from_screen(50, 50))
    assert hit.pixel == (50, 50)
    assert hit.color == (255, 0, 0, 255)
    assert hit.element is None
    assert hit.distance == pytest.approx(1.0)

    expected = view.screen_to_location(50, 50)
    assert hit.location.lon == pytest.approx(expected.lon)

    assert drawer.raycast(Ray.from_screen(100, 100)).element is marker


def test_raycast_misses(view, cache):
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    assert drawer.raycast(Ray.from_screen(-5, 10)) is None
    assert drawer.raycast(Ray((10, 10, 1), (0, 0, 1))) is None
    assert drawer.raycast(Ray.from_screen(10, 10, height=5), max_distance=2) is None


def test_raycast_before_first_draw_misses(view, cache):
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.initialize()
    assert drawer.raycast(Ray.from_screen(10, 10)) is None
    drawer.draw()
    assert drawer.raycast(Ray.from_screen(10, 10)) is not None


def test_ray_intersection():
    assert Ray((0, 0, 2), (1, 0, -1)).intersect_plane(0) == pytest.approx((2 * 2**0.5, 2, 0))
    assert Ray((0, 0, 2), (1, 0, 0)).intersect_plane(0) is None


def test_lifecycle_and_dispose(view, cache):
    drawer = BufferDrawer(view, cache, ['osm'])
    assert drawer.state is DrawerState.UNINITIALIZED
    assert drawer.raycast(Ray.from_screen(1, 1)) is None

    drawer.initialize()
    drawer.initialize()
    assert drawer.state is DrawerState.INITIALIZED

    drawer.dispose()
    drawer.dispose()
    assert drawer.is_disposed
    assert drawer.image is None

    drawer.draw()
    assert drawer.frames_drawn == 0
    assert drawer.raycast(Ray.from_screen(1, 1)) is None
    with pytest.raises(StaleDrawerError):
        drawer.initialize()


def test_context_manager_disposes(view, cache):
    with BufferDrawer(view, cache, ['osm']) as drawer:
        drawer.draw()
    assert drawer.is_disposed


def test_resize_reallocates_buffer(view, cache):
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.draw()
    view.resize(300, 200)
    drawer.draw()
    assert drawer.image.size == (300, 200)


def test_save_and_snapshot(view, cache, tmp_path):
    drawer = BufferDrawer(view, cache, ['osm'])
    with pytest.raises(RuntimeError):
        drawer.save(tmp_path / 'x.png')
    drawer.draw()
    snap = drawer.snapshot()
    assert snap is not drawer.image
    drawer.save(tmp_path / 'x.png')
    assert (tmp_path / 'x.png').exists()


def test_marker_geo_hit(view, cache):
    markers = ElementManager(Marker)
    markers.create(GeoPoint(0.0, 0.0))
    drawer = BufferDrawer(view, cache, ['osm'])
    drawer.add_element_manager(markers)
    drawer.draw()
    px, py = view.location_to_screen(0.0, 0.0)
    assert drawer.elements_at(px, py)
