# Render surfaces and overlay elements
from render.buffer_drawer import BufferDrawer
from render.drawer import DrawerState, MapDrawer, Ray, RaycastHit, StaleDrawerError
from render.elements import ElementManager, Line, MapElement, Marker, Polygon, Rectangle
from render.vector_drawer import GeometryRecord, VectorDrawer

__all__ = [
    'BufferDrawer',
    'DrawerState',
    'ElementManager',
    'GeometryRecord',
    'Line',
    'MapDrawer',
    'MapElement',
    'Marker',
    'Polygon',
    'Ray',
    'RaycastHit',
    'Rectangle',
    'StaleDrawerError',
    'VectorDrawer',
]
