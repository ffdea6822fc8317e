# Platforms package
from .config_store import PlatformConfigStore

__all__ = ['PlatformConfigStore']
