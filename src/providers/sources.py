"""Layer registry: built-in providers plus user-defined layers."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from domain.models import LayerConfig
from shared.constants import ContentType
from tiles.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

logger = logging.getLogger(__name__)

OSM_ATTRIBUTION = '© OpenStreetMap contributors'

BUILTIN_LAYERS: tuple[LayerConfig, ...] = (
    LayerConfig(
        id='osm',
        name='OpenStreetMap',
        url_template='https://a.tile.openstreetmap.org/{zoom}/{x}/{y}.png',
        max_zoom=19,
        attribution=OSM_ATTRIBUTION,
    ),
    LayerConfig(
        id='arcgis-imagery',
        name='ArcGIS World Imagery',
        url_template='https://server.arcgisonline.com/ArcGIS/rest/services/{variant}/MapServer/tile/{zoom}/{y}/{x}',
        extra={'variant': 'World_Imagery'},
        max_zoom=19,
        attribution='Esri',
    ),
    LayerConfig(
        id='arcgis-topo',
        name='ArcGIS World Topo Map',
        url_template='https://server.arcgisonline.com/ArcGIS/rest/services/{variant}/MapServer/tile/{zoom}/{y}/{x}',
        extra={'variant': 'World_Topo_Map'},
        max_zoom=19,
        attribution='Esri',
    ),
    LayerConfig(
        id='carto-positron',
        name='CARTO Positron',
        url_template='https://cartodb-basemaps-d.global.ssl.fastly.net/{variant}/{z}/{x}/{y}.png',
        extra={'variant': 'light_all'},
        max_zoom=20,
        attribution=f'{OSM_ATTRIBUTION}, © CARTO',
    ),
    LayerConfig(
        id='carto-dark',
        name='CARTO Dark Matter',
        url_template='https://cartodb-basemaps-d.global.ssl.fastly.net/{variant}/{z}/{x}/{y}.png',
        extra={'variant': 'dark_all'},
        max_zoom=20,
        attribution=f'{OSM_ATTRIBUTION}, © CARTO',
    ),
    LayerConfig(
        id='virtualearth-aerial',
        name='Virtual Earth Aerial',
        url_template='https://t{rnd0-4}.ssl.ak.tiles.virtualearth.net/tiles/a{quad}.jpeg?mkt={lng}&g=1457&n=z',
        extra={'lng': 'en-us'},
        min_zoom=1,
        max_zoom=19,
        attribution='Microsoft',
    ),
    LayerConfig(
        id='mapbox-streets',
        name='Mapbox Streets (vector)',
        url_template=(
            'https://b.tiles.mapbox.com/v4/mapbox.mapbox-terrain-v2,mapbox.mapbox-streets-v8/'
            '{zoom}/{x}/{y}.vector.pbf?access_token={accesstoken}'
        ),
        content_type=ContentType.VECTOR,
        max_zoom=16,
        credentials=('accesstoken',),
        attribution='© Mapbox',
    ),
    LayerConfig(
        id='mapbox-satellite',
        name='Mapbox Satellite',
        url_template='https://api.mapbox.com/v4/mapbox.satellite/{z}/{x}/{y}.png?access_token={accesstoken}',
        credentials=('accesstoken',),
        max_zoom=22,
        attribution='© Mapbox',
    ),
    # Traffic overlays
    LayerConfig(
        id='traffic-google',
        name='Google Traffic',
        url_template='https://mt{rnd0-3}.google.com/vt?lyrs=h,traffic&x={x}&y={y}&z={zoom}',
        overlay=True,
        max_zoom=20,
    ),
    LayerConfig(
        id='traffic-here',
        name='HERE Traffic',
        url_template=(
            'https://1.traffic.maps.ls.hereapi.com/maptile/2.1/flowtile/newest/terrain.day/'
            '{zoom}/{x}/{y}/256/png8?apiKey={apikey}&lg={lng}'
        ),
        extra={'lng': 'eng'},
        credentials=('apikey',),
        overlay=True,
        max_zoom=20,
    ),
    LayerConfig(
        id='traffic-virtualearth',
        name='Virtual Earth Traffic',
        url_template='https://t0-traffic.tiles.virtualearth.net/comp/ch/{quad}?it=Z,TF&L&n=z',
        overlay=True,
        min_zoom=1,
        max_zoom=19,
    ),
)


class ProviderRegistry:
    """Layer id -> LayerConfig. Thread-safe; read by the fetch loop."""

    def __init__(self, layers: Iterable[LayerConfig] | None = None, *, builtins: bool = True) -> None:
        self._lock = threading.Lock()
        self._layers: dict[str, LayerConfig] = {}
        self._listeners: list[Callable[[str], None]] = []
        if builtins:
            for layer in BUILTIN_LAYERS:
                self._layers[layer.id] = layer
        for layer in layers or ():
            self._layers[layer.id] = layer

    def __contains__(self, layer_id: object) -> bool:
        with self._lock:
            return layer_id in self._layers

    def __iter__(self) -> Iterator[LayerConfig]:
        with self._lock:
            return iter(list(self._layers.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._layers)

    def get(self, layer_id: str) -> LayerConfig:
        with self._lock:
            layer = self._layers.get(layer_id)
        if layer is None:
            msg = f'Unknown layer {layer_id!r}'
            raise ConfigurationError(msg)
        return layer

    def find(self, layer_id: str) -> LayerConfig | None:
        with self._lock:
            return self._layers.get(layer_id)

    def register(self, layer: LayerConfig) -> None:
        """Add or replace a layer; listeners are told so cached tiles can be dropped."""
        with self._lock:
            replaced = layer.id in self._layers
            self._layers[layer.id] = layer
            listeners = list(self._listeners)
        logger.info('%s layer %s', 'Replaced' if replaced else 'Registered', layer.id)
        if replaced:
            for listener in listeners:
                listener(layer.id)

    def unregister(self, layer_id: str) -> bool:
        with self._lock:
            removed = self._layers.pop(layer_id, None) is not None
            listeners = list(self._listeners)
        if removed:
            for listener in listeners:
                listener(layer_id)
        return removed

    def on_change(self, listener: Callable[[str], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def base_layers(self) -> list[LayerConfig]:
        return [layer for layer in self if not layer.overlay]

    def overlays(self) -> list[LayerConfig]:
        return [layer for layer in self if layer.overlay]
