"""Services package - engine context and settings profiles."""

from services.map_engine import MapEngine
from services.settings_service import SettingsService

__all__ = [
    'MapEngine',
    'SettingsService',
]
