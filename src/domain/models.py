from pydantic import BaseModel, Field, ValidationInfo, field_validator

from shared.constants import (
    DEFAULT_LAYER_ID,
    DOWNLOAD_CONCURRENCY,
    HTTP_CACHE_ENABLED,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    MAX_ZOOM,
    MERCATOR_MAX_LAT,
    MIN_ZOOM,
    TILE_CACHE_MAX_SIZE_MB,
    TILE_CACHE_MAX_TILES,
    TILE_DISK_CACHE_DIR,
    TILE_DISK_CACHE_ENABLED,
    TILE_DISK_CACHE_MAX_SIZE_MB,
    TILE_DOWNLOAD_ATTEMPTS,
    TILE_RETRY_AFTER_SEC,
    TILE_SIZE,
    ContentType,
    ProjectionKind,
)


class LayerConfig(BaseModel):
    """Tile layer served by one provider."""

    model_config = {
        'extra': 'ignore',
        'frozen': True,
    }

    id: str
    name: str = ''
    # URL with {token} placeholders, see providers.urls
    url_template: str
    content_type: ContentType = ContentType.RASTER
    min_zoom: int = MIN_ZOOM
    max_zoom: int = MAX_ZOOM
    tile_size: int = TILE_SIZE
    # Values for {variant}, {ext}, {lng} and other template tokens
    extra: dict[str, str] = Field(default_factory=dict)
    # Credential names the template needs, resolved by KeyManager
    credentials: tuple[str, ...] = ()
    # Drawn on top of a base layer
    overlay: bool = False
    attribution: str = ''

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            msg = 'Layer id must not be empty'
            raise ValueError(msg)
        return v

    @field_validator('url_template')
    @classmethod
    def validate_template(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://', 'file://')):
            msg = f'Unsupported URL template: {v!r}'
            raise ValueError(msg)
        return v

    @field_validator('min_zoom', 'max_zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        return max(MIN_ZOOM, min(MAX_ZOOM, int(v)))

    @field_validator('max_zoom')
    @classmethod
    def validate_zoom_range(cls, v: int, info: ValidationInfo) -> int:
        min_zoom = info.data.get('min_zoom', MIN_ZOOM)
        if v < min_zoom:
            msg = f'max_zoom {v} is below min_zoom {min_zoom}'
            raise ValueError(msg)
        return v

    @field_validator('credentials', mode='before')
    @classmethod
    def normalize_credentials(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(str(name).lower() for name in v)  # type: ignore[union-attr]

    def supports_zoom(self, zoom: int) -> bool:
        return self.min_zoom <= zoom <= self.max_zoom


class EngineSettings(BaseModel):
    """Everything needed to build a MapEngine; persisted as a TOML profile."""

    model_config = {
        'extra': 'ignore',  # tolerate keys written by newer versions
    }

    # Initial view
    layer_id: str = DEFAULT_LAYER_ID
    overlays: list[str] = Field(default_factory=list)
    lon: float = 0.0
    lat: float = 0.0
    zoom: int = 3
    width: int = 800
    height: int = 600
    projection: ProjectionKind = ProjectionKind.WGS84

    # In-memory tile cache
    max_tiles: int = TILE_CACHE_MAX_TILES
    max_cache_size_mb: float = TILE_CACHE_MAX_SIZE_MB
    retry_after_sec: float = TILE_RETRY_AFTER_SEC
    download_attempts: int = TILE_DOWNLOAD_ATTEMPTS
    download_concurrency: int = DOWNLOAD_CONCURRENCY

    # HTTP
    http_timeout: float = HTTP_TIMEOUT_DEFAULT
    http_retries: int = HTTP_RETRIES_DEFAULT
    http_cache_enabled: bool = HTTP_CACHE_ENABLED
    http_cache_dir: str | None = None

    # Persistent tile store
    disk_cache_enabled: bool = TILE_DISK_CACHE_ENABLED
    disk_cache_dir: str = TILE_DISK_CACHE_DIR
    disk_cache_max_size_mb: float = TILE_DISK_CACHE_MAX_SIZE_MB

    # Explicit credentials; environment variables are used when absent
    credentials: dict[str, str] = Field(default_factory=dict)
    # Additional layers on top of the built-in registry
    layers: list[LayerConfig] = Field(default_factory=list)

    @field_validator('zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        return max(MIN_ZOOM, min(MAX_ZOOM, int(v)))

    @field_validator('lat')
    @classmethod
    def validate_lat(cls, v: float) -> float:
        return max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, float(v)))

    @field_validator('width', 'height', 'max_tiles', 'download_attempts', 'download_concurrency', 'http_retries')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        v = int(v)
        if v < 1:
            msg = 'Value must be at least 1'
            raise ValueError(msg)
        return v

    @field_validator('credentials')
    @classmethod
    def normalize_credential_names(cls, v: dict[str, str]) -> dict[str, str]:
        return {name.lower(): value for name, value in v.items()}

    @property
    def max_cache_bytes(self) -> int:
        return int(self.max_cache_size_mb * 1024 * 1024)
