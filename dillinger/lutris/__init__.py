# Lutris package
from .client import LutrisClient
from .resolver import (
    apply_fragment,
    build_fragment,
    extract_architecture,
    extract_dll_overrides,
    extract_winetricks_verbs,
    resolve_selection,
)

__all__ = [
    'LutrisClient',
    'apply_fragment',
    'build_fragment',
    'extract_architecture',
    'extract_dll_overrides',
    'extract_winetricks_verbs',
    'resolve_selection',
]
