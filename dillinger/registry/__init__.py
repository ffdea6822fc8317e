# Registry package
from .games_registry import GamesRegistry, get_registry
from .volume_registry import VolumePurposeRegistry

__all__ = ['GamesRegistry', 'get_registry', 'VolumePurposeRegistry']
