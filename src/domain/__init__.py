"""Domain layer - settings models and view state."""
from domain.models import EngineSettings, LayerConfig
from domain.view_state import ViewState

__all__ = [
    'EngineSettings',
    'LayerConfig',
    'ViewState',
]
