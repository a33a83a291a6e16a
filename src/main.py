"""Command line entry point: render a map snapshot to an image file."""

import argparse
import logging
import sys
from pathlib import Path

from domain.models import EngineSettings
from geo.points import GeoPoint
from providers.keys import load_secrets
from render.buffer_drawer import BufferDrawer
from services.map_engine import MapEngine
from services.settings_service import SettingsService
from shared.diagnostics import ResourceMonitor, log_comprehensive_diagnostics
from tiles.errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_DIR = Path.home() / '.tilemapper'


def setup_logging(level: int = logging.INFO, log_dir: Path | None = None) -> Path:
    """Configure logging to stdout and a UTF-8 log file.

    Returns:
        Path of the log file.
    """
    log_dir = log_dir or APP_DIR / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'tilemapper.log'

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='tilemapper - render web map tiles into an image',
    )
    parser.add_argument('--profile', help='Settings profile name to start from')
    parser.add_argument('--profiles-dir', help='Directory with TOML profiles')
    parser.add_argument('--lon', type=float, help='Center longitude')
    parser.add_argument('--lat', type=float, help='Center latitude')
    parser.add_argument('--zoom', type=int, help='Zoom level')
    parser.add_argument('--width', type=int, help='Image width in pixels')
    parser.add_argument('--height', type=int, help='Image height in pixels')
    parser.add_argument('--layer', help='Base layer id')
    parser.add_argument(
        '--overlay',
        action='append',
        default=None,
        help='Overlay layer id (may be repeated)',
    )
    parser.add_argument(
        '--marker',
        action='append',
        default=[],
        metavar='LON,LAT',
        help='Put a marker at LON,LAT (may be repeated)',
    )
    parser.add_argument('--timeout', type=float, default=60.0, help='Seconds to wait for tiles')
    parser.add_argument('--save-profile', help='Save the effective settings under this name')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    parser.add_argument('-o', '--out', default='map.png', help='Output image path')
    return parser


def resolve_settings(args: argparse.Namespace, service: SettingsService) -> EngineSettings:
    """Profile (or active profile) with command line overrides applied."""
    settings = service.load(args.profile) if args.profile else service.load_active()
    overrides = {
        'lon': args.lon,
        'lat': args.lat,
        'zoom': args.zoom,
        'width': args.width,
        'height': args.height,
        'layer_id': args.layer,
        'overlays': args.overlay,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return settings
    return EngineSettings.model_validate({**settings.model_dump(), **overrides})


def parse_marker(value: str) -> GeoPoint:
    try:
        lon_s, lat_s = value.split(',', 1)
        return GeoPoint(float(lon_s), float(lat_s))
    except ValueError as e:
        msg = f'Marker must be LON,LAT, got {value!r}'
        raise argparse.ArgumentTypeError(msg) from e


def render_snapshot(engine: MapEngine, out: Path, timeout: float) -> bool:
    """Load every visible tile, draw once and save. Returns False if incomplete."""
    drawer = engine.add_drawer(BufferDrawer(engine.view, engine.cache, engine.layer_ids))
    complete = engine.wait_idle(timeout)
    engine.request_redraw()
    engine.frame()
    out.parent.mkdir(parents=True, exist_ok=True)
    drawer.save(out)
    stats = engine.cache.stats
    logger.info(
        'Snapshot: %d tiles (%s), pipeline %s',
        stats.total_tiles,
        stats.tiles_by_status,
        engine.pipeline.stats,
    )
    return complete


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    logger.info('Starting tilemapper')
    load_secrets()

    try:
        service = SettingsService(args.profiles_dir)
        settings = resolve_settings(args, service)
        markers = [parse_marker(m) for m in args.marker]
    except (ValueError, FileNotFoundError, argparse.ArgumentTypeError) as e:
        logger.error('%s', e)
        return 2

    if args.save_profile:
        service.save(args.save_profile, settings)

    log_comprehensive_diagnostics('SNAPSHOT_START', level=logging.DEBUG)
    try:
        with ResourceMonitor('SNAPSHOT'), MapEngine(settings) as engine:
            for point in markers:
                engine.markers.create(point)
            complete = render_snapshot(engine, Path(args.out), args.timeout)
    except ConfigurationError as e:
        logger.error('Configuration error: %s', e)
        return 2

    if not complete:
        logger.warning('Some tiles did not load; the snapshot has gaps')
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
