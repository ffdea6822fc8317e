"""
Storage volume records.

Tracked volumes are persisted in ``volumes.json`` and can hold a purpose.
Unmanaged volumes are docker volumes found on the host that dillinger does
not track yet; they are shown alongside tracked ones but never persisted
until adopted.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from dillinger.utils.paths import normalize_host_path

logger = logging.getLogger(__name__)


class VolumeType(str, Enum):
    DOCKER = "docker"
    BIND = "bind"


class VolumePurpose(str, Enum):
    INSTALLERS = "installers"
    DOWNLOADS = "downloads"
    INSTALLED = "installed"
    ROMS = "roms"
    OTHER = "other"


class StorageType(str, Enum):
    SSD = "ssd"
    PLATTER = "platter"
    ARCHIVE = "archive"


# Purposes that only one volume may hold at a time
EXCLUSIVE_PURPOSES = frozenset(p for p in VolumePurpose if p is not VolumePurpose.OTHER)

UNMANAGED_ID_PREFIX = "unmanaged:"


def parse_enum(enum_cls, raw, fallback):
    """Enum member for a stored value; unknown values log a warning and give ``fallback``"""
    if raw is None or raw == '':
        return fallback
    try:
        return enum_cls(raw)
    except ValueError:
        logger.warning(f"[Entities] Unknown {enum_cls.__name__} value {raw!r}, using {fallback.value if fallback else None}")
        return fallback


@dataclass
class Volume:
    id: str
    name: str
    host_path: str
    type: VolumeType = VolumeType.BIND
    purpose: VolumePurpose = VolumePurpose.OTHER
    storage_type: Optional[StorageType] = None
    docker_name: Optional[str] = None     # Backing docker volume, if any

    @property
    def storage_handle(self) -> str:
        """Identity of the backing storage.

        Two records with the same handle point at the same storage no matter
        what they are called.
        """
        if self.type is VolumeType.DOCKER and self.docker_name:
            return f"docker:{self.docker_name}"
        return f"bind:{normalize_host_path(self.host_path)}"

    @property
    def managed(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'host_path': self.host_path,
            'type': self.type.value,
            'purpose': self.purpose.value,
            'storage_type': self.storage_type.value if self.storage_type else None,
            'docker_name': self.docker_name,
            'managed': self.managed,
        }


@dataclass
class TrackedVolume(Volume):
    """A volume dillinger owns and persists"""
    created_at: float = field(default_factory=time.time)
    last_verified: Optional[float] = None

    @property
    def managed(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['created_at'] = self.created_at
        data['last_verified'] = self.last_verified
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackedVolume':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            host_path=data.get('host_path', ''),
            type=parse_enum(VolumeType, data.get('type'), VolumeType.BIND),
            purpose=parse_enum(VolumePurpose, data.get('purpose'), VolumePurpose.OTHER),
            storage_type=parse_enum(StorageType, data.get('storage_type'), None),
            docker_name=data.get('docker_name'),
            created_at=data.get('created_at') or time.time(),
            last_verified=data.get('last_verified'),
        )


@dataclass
class UnmanagedVolume(Volume):
    """A host volume seen through docker but not tracked (never persisted)"""

    @classmethod
    def from_docker(cls, info: Dict[str, Any]) -> 'UnmanagedVolume':
        """Build from a docker ``/volumes`` entry.

        Bind-backed volumes report their host directory in ``Options.device``;
        plain docker volumes only have the daemon's ``Mountpoint``.
        """
        name = info.get('Name', '')
        options = info.get('Options') or {}
        host_path = options.get('device') or info.get('Mountpoint', '')
        return cls(
            id=f"{UNMANAGED_ID_PREFIX}{name}",
            name=name,
            host_path=host_path,
            type=VolumeType.DOCKER,
            purpose=VolumePurpose.OTHER,
            docker_name=name,
        )


@dataclass
class VolumeVerification:
    """Result of checking that a tracked volume's storage is still there"""
    volume_id: str
    accessible: bool
    error: Optional[str] = None
    checked_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'volume_id': self.volume_id,
            'accessible': self.accessible,
            'error': self.error,
            'checked_at': self.checked_at,
        }
