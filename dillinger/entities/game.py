"""
Game, platform configuration and installation records.

A game owns one ``PlatformConfig`` per execution platform (``windows-wine``,
``linux-native``, emulator ids). Each platform carries its own settings, an
installation sub-record and the Lutris installer scripts that were attached
to it. Everything here is plain data with ``to_dict``/``from_dict`` for the
JSON registry; the rules live in the platform store and lifecycle manager.
"""
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from dillinger.errors import InvalidRequest

logger = logging.getLogger(__name__)


class InstallStatus(str, Enum):
    NOT_INSTALLED = "not_installed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


# Every legal status change. Anything else is rejected.
ALLOWED_TRANSITIONS: Dict[InstallStatus, FrozenSet[InstallStatus]] = {
    InstallStatus.NOT_INSTALLED: frozenset({InstallStatus.INSTALLING}),
    InstallStatus.INSTALLING: frozenset({
        InstallStatus.INSTALLED,
        InstallStatus.FAILED,
        InstallStatus.NOT_INSTALLED,  # cancel
    }),
    InstallStatus.INSTALLED: frozenset({InstallStatus.NOT_INSTALLED}),
    InstallStatus.FAILED: frozenset({InstallStatus.NOT_INSTALLED}),
}

TERMINAL_STATUSES = frozenset({InstallStatus.INSTALLED, InstallStatus.FAILED})


def default_settings() -> Dict[str, Any]:
    """Settings for a platform that has never been edited."""
    return {
        'wine': {
            'arch': None,           # 'win32' | 'win64' | None
            'version_id': None,
            'dll_overrides': {},    # dll name -> override mode ("n,b", "disabled", ...)
            'winetricks': [],
        },
        'launch': {
            'command': '',
            'args': '',
            'env': {},
        },
        'gamescope': {
            'enabled': False,
            'width': None,
            'height': None,
            'fullscreen': False,
        },
        'overlay': False,
    }


@dataclass
class InstallationRecord:
    """Installation state of one platform of one game"""
    status: InstallStatus = InstallStatus.NOT_INSTALLED
    installer_path: str = ""
    install_path: str = ""
    installer_args: Optional[str] = None
    wine_version_id: Optional[str] = None
    wine_arch: Optional[str] = None
    container_id: Optional[str] = None    # Runner handle while installing
    installed_at: Optional[str] = None    # ISO-8601
    error: Optional[str] = None
    download_cache_path: Optional[str] = None
    started_at: Optional[str] = None
    executables: List[str] = field(default_factory=list)

    def can_transition(self, target: InstallStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: InstallStatus) -> None:
        """Move to ``target`` or raise InvalidRequest for an illegal change."""
        if not self.can_transition(target):
            raise InvalidRequest(
                f"Illegal installation transition {self.status.value} -> {target.value}"
            )
        self.status = target

    def cleared(self) -> 'InstallationRecord':
        """Fresh ``not_installed`` record that keeps only the download cache."""
        return InstallationRecord(download_cache_path=self.download_cache_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'installer_path': self.installer_path,
            'install_path': self.install_path,
            'installer_args': self.installer_args,
            'wine_version_id': self.wine_version_id,
            'wine_arch': self.wine_arch,
            'container_id': self.container_id,
            'installed_at': self.installed_at,
            'error': self.error,
            'download_cache_path': self.download_cache_path,
            'started_at': self.started_at,
            'executables': list(self.executables),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'InstallationRecord':
        if not data:
            return cls()
        raw_status = data.get('status', InstallStatus.NOT_INSTALLED.value)
        try:
            status = InstallStatus(raw_status)
        except ValueError:
            logger.warning(f"[Entities] Unknown installation status {raw_status!r}, treating as not_installed")
            status = InstallStatus.NOT_INSTALLED
        return cls(
            status=status,
            installer_path=data.get('installer_path', '') or '',
            install_path=data.get('install_path', '') or '',
            installer_args=data.get('installer_args'),
            wine_version_id=data.get('wine_version_id'),
            wine_arch=data.get('wine_arch'),
            container_id=data.get('container_id'),
            installed_at=data.get('installed_at'),
            error=data.get('error'),
            download_cache_path=data.get('download_cache_path'),
            started_at=data.get('started_at'),
            executables=list(data.get('executables') or []),
        )


@dataclass
class LutrisInstaller:
    """A community installer script attached to a platform (read-only)"""
    id: str
    slug: str
    version: str
    script: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'slug': self.slug,
            'version': self.version,
            'notes': self.notes,
            'script': copy.deepcopy(self.script),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LutrisInstaller':
        return cls(
            id=str(data['id']),
            slug=data.get('slug', ''),
            version=data.get('version', ''),
            script=copy.deepcopy(data.get('script') or {}),
            notes=data.get('notes'),
        )


@dataclass
class PlatformConfig:
    """Settings and installation state of a game on one platform"""
    platform_id: str
    file_path: Optional[str] = None       # ROM/executable for file based platforms
    settings: Dict[str, Any] = field(default_factory=default_settings)
    installation: InstallationRecord = field(default_factory=InstallationRecord)
    lutris_installers: List[LutrisInstaller] = field(default_factory=list)
    selected_lutris_installer_id: Optional[str] = None

    def get_lutris_installer(self, installer_id: str) -> Optional[LutrisInstaller]:
        for installer in self.lutris_installers:
            if installer.id == str(installer_id):
                return installer
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platform_id': self.platform_id,
            'file_path': self.file_path,
            'settings': copy.deepcopy(self.settings),
            'installation': self.installation.to_dict(),
            'lutris_installers': [i.to_dict() for i in self.lutris_installers],
            'selected_lutris_installer_id': self.selected_lutris_installer_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlatformConfig':
        selected = data.get('selected_lutris_installer_id')
        return cls(
            platform_id=data['platform_id'],
            file_path=data.get('file_path'),
            settings=copy.deepcopy(data.get('settings') or default_settings()),
            installation=InstallationRecord.from_dict(data.get('installation')),
            lutris_installers=[LutrisInstaller.from_dict(i) for i in data.get('lutris_installers', [])],
            selected_lutris_installer_id=str(selected) if selected is not None else None,
        )


@dataclass
class Draft:
    """An uncommitted edit of one platform's settings.

    ``None`` fields mean "not part of this edit" and are left alone on commit.
    """
    platform_id: str
    settings: Optional[Dict[str, Any]] = None
    file_path: Optional[str] = None

    @classmethod
    def from_platform(cls, config: PlatformConfig) -> 'Draft':
        return cls(
            platform_id=config.platform_id,
            settings=copy.deepcopy(config.settings),
            file_path=config.file_path,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platform_id': self.platform_id,
            'settings': copy.deepcopy(self.settings),
            'file_path': self.file_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Draft':
        return cls(
            platform_id=data['platform_id'],
            settings=copy.deepcopy(data.get('settings')),
            file_path=data.get('file_path'),
        )


@dataclass
class Game:
    """A cataloged game and its per-platform configurations"""
    id: str
    title: str
    default_platform_id: Optional[str] = None
    platforms: List[PlatformConfig] = field(default_factory=list)

    def get_platform(self, platform_id: str) -> Optional[PlatformConfig]:
        for config in self.platforms:
            if config.platform_id == platform_id:
                return config
        return None

    def platform_ids(self) -> List[str]:
        return [config.platform_id for config in self.platforms]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'default_platform_id': self.default_platform_id,
            'platforms': [p.to_dict() for p in self.platforms],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Game':
        platforms: List[PlatformConfig] = []
        seen = set()
        for entry in data.get('platforms', []):
            config = PlatformConfig.from_dict(entry)
            # Hand-edited files may repeat a platform; first entry wins
            if config.platform_id in seen:
                logger.warning(f"[Entities] Dropping duplicate platform {config.platform_id} for game {data.get('id')}")
                continue
            seen.add(config.platform_id)
            platforms.append(config)
        return cls(
            id=str(data['id']),
            title=data.get('title', ''),
            default_platform_id=data.get('default_platform_id'),
            platforms=platforms,
        )
