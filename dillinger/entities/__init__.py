# Entities package
from .game import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Draft,
    Game,
    InstallationRecord,
    InstallStatus,
    LutrisInstaller,
    PlatformConfig,
    default_settings,
)
from .volume import (
    EXCLUSIVE_PURPOSES,
    StorageType,
    TrackedVolume,
    UnmanagedVolume,
    Volume,
    VolumePurpose,
    VolumeType,
    VolumeVerification,
)

__all__ = [
    'ALLOWED_TRANSITIONS',
    'TERMINAL_STATUSES',
    'Draft',
    'Game',
    'InstallationRecord',
    'InstallStatus',
    'LutrisInstaller',
    'PlatformConfig',
    'default_settings',
    'EXCLUSIVE_PURPOSES',
    'StorageType',
    'TrackedVolume',
    'UnmanagedVolume',
    'Volume',
    'VolumePurpose',
    'VolumeType',
    'VolumeVerification',
]
