from enum import Enum
from pathlib import Path

# --- Tile grid
# Side of a standard tile (px)
TILE_SIZE = 256
# Highest zoom level supported by the projection
MAX_ZOOM = 23
MIN_ZOOM = 0
# Extra ring of tiles requested around the viewport
TILE_MARGIN = 1

# --- WGS84 ellipsoid Mercator
# Semi-major axis (m)
WGS84_A = 6378137.0
# Eccentricity-derived constant
WGS84_K = 0.0818191908426
# Half of the projected world width (m)
WGS84_HALF_WORLD_M = 20037508.342789
# Meters-to-tile scale divisor for 256 px tiles at zoom 23
WGS84_TILE_SCALE = 53.5865938 / 256
# Zoom at which one tile unit equals the base scale
WGS84_BASE_ZOOM = 23
# Inverse isometric-latitude series coefficients
WGS84_C1 = 0.00335655146887969
WGS84_C2 = 0.00000657187271079536
WGS84_C3 = 0.00000001764564338702
WGS84_C4 = 0.00000000005328478445
# Latitude limit of Mercator validity (deg)
MERCATOR_MAX_LAT = 85.0

WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LAT_MAX_DEG = 90.0


class ContentType(str, Enum):
    """Kind of payload served by a layer."""

    RASTER = 'raster'
    VECTOR = 'vector'


class ProjectionKind(str, Enum):
    WGS84 = 'wgs84'
    SPHERICAL_MERCATOR = 'spherical_mercator'


# --- In-memory tile cache
# Maximum number of tiles held in memory
TILE_CACHE_MAX_TILES = 512
# Maximum decoded payload held in memory (MB)
TILE_CACHE_MAX_SIZE_MB = 128
# Seconds before a failed tile may be fetched again (0 = immediately, -1 = never)
TILE_RETRY_AFTER_SEC = 10.0
# Download attempts per tile before it stays in error
TILE_DOWNLOAD_ATTEMPTS = 3

# --- Fetch pipeline
# Maximum number of simultaneous downloads
DOWNLOAD_CONCURRENCY = 5

# --- Persistent tile-bytes cache
TILE_DISK_CACHE_ENABLED = False
TILE_DISK_CACHE_DIR = str(Path.home() / '.tilemapper' / 'cache' / 'tiles')
TILE_DISK_CACHE_MAX_SIZE_MB = 500
# Write queue for the background cache writer
TILE_WRITE_QUEUE_SIZE = 1000

# --- HTTP
HTTP_TIMEOUT_DEFAULT = 20.0
HTTP_RETRIES_DEFAULT = 3
HTTP_BACKOFF_FACTOR = 1.6
HTTP_USER_AGENT = 'tilemapper/1.0'
# Response cache (aiohttp-client-cache)
HTTP_CACHE_ENABLED = False
HTTP_CACHE_EXPIRE_HOURS = 168
HTTP_CACHE_RESPECT_HEADERS = True
HTTP_CACHE_STALE_IF_ERROR_HOURS = 72
HTTP_5XX_MIN = 500
HTTP_5XX_MAX = 600

# --- Settings profiles
PROFILES_DIR = str(Path.home() / '.tilemapper' / 'configs' / 'profiles')
DEFAULT_LAYER_ID = 'osm'

# --- Rendering
# Buffer colour where no tile is loaded
EMPTY_TILE_COLOR = (0, 0, 0, 0)
MARKER_DEFAULT_SIZE_PX = 16
MARKER_DEFAULT_COLOR = (220, 30, 30, 255)
DRAWING_DEFAULT_COLOR = (30, 90, 220, 255)
DRAWING_DEFAULT_WIDTH_PX = 3
# Tolerance for line hit testing (px)
LINE_HIT_TOLERANCE_PX = 4.0
# Geometry extent of decoded vector tiles
VECTOR_TILE_EXTENT = 4096
