"""
Installation lifecycle manager.

Drives the installation record of one ``(game, platform)`` pair through

    not_installed -> installing -> installed | failed
    installing -> not_installed (cancel)
    installed | failed -> not_installed (reset)

Every transition is a locked read-check-write of the stored game. Polling
asks the runner for news outside the lock and applies the answer only if the
record still belongs to the same runner handle, so late reports from a
cancelled run are dropped.
"""
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from dillinger.entities.game import (
    Game,
    InstallationRecord,
    InstallStatus,
    PlatformConfig,
    TERMINAL_STATUSES,
)
from dillinger.entities.volume import VolumePurpose
from dillinger.errors import (
    AlreadyInstalling,
    DillingerError,
    ExternalRunnerError,
    InvalidRequest,
    NotFound,
)
from dillinger.lutris.resolver import apply_fragment, build_fragment, resolve_selection
from dillinger.registry.games_registry import GamesRegistry
from dillinger.registry.volume_registry import VolumePurposeRegistry
from dillinger.runners.base import InstallerRunner, RunnerState, RunnerStatus
from dillinger.utils.executables import find_executables
from dillinger.utils.paths import normalize_host_path

logger = logging.getLogger(__name__)


@dataclass
class StartOptions:
    """Optional inputs of ``start()``"""
    installer_args: Optional[str] = None
    wine_version_id: Optional[str] = None
    wine_arch: Optional[str] = None
    download_cache_path: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'StartOptions':
        data = data or {}
        return cls(
            installer_args=data.get('installer_args'),
            wine_version_id=data.get('wine_version_id'),
            wine_arch=data.get('wine_arch'),
            download_cache_path=data.get('download_cache_path'),
            env=dict(data.get('env') or {}),
        )


def _now() -> str:
    return datetime.now().isoformat()


def _platform(game: Game, platform_id: str) -> PlatformConfig:
    config = game.get_platform(platform_id)
    if config is None:
        raise NotFound(f"Platform {platform_id} is not configured for {game.id}")
    return config


def runner_env(settings: Dict) -> Dict[str, str]:
    """Wine environment for an installer run from platform settings"""
    wine = (settings or {}).get('wine') or {}
    env: Dict[str, str] = {}
    if wine.get('arch'):
        env['WINEARCH'] = wine['arch']
    overrides = wine.get('dll_overrides') or {}
    if overrides:
        env['WINEDLLOVERRIDES'] = ";".join(f"{name}={mode}" for name, mode in overrides.items())
    if wine.get('winetricks'):
        env['DILLINGER_WINETRICKS'] = " ".join(wine['winetricks'])
    return env


class InstallationLifecycleManager:
    """Owns every write to installation records"""

    def __init__(
        self,
        registry: GamesRegistry,
        runner: InstallerRunner,
        volumes: Optional[VolumePurposeRegistry] = None,
        scanner: Callable[[str], List[str]] = find_executables,
    ):
        self.registry = registry
        self.runner = runner
        self.volumes = volumes
        self.scanner = scanner

    def _default_install_path(self, game_id: str) -> Optional[str]:
        if self.volumes is None:
            return None
        return self.volumes.default_path(VolumePurpose.INSTALLED, game_id)

    def get_record(self, game_id: str, platform_id: str) -> InstallationRecord:
        game = self.registry.load(game_id)
        return copy.deepcopy(_platform(game, platform_id).installation)

    async def start(
        self,
        game_id: str,
        platform_id: str,
        installer_path: str,
        install_path: Optional[str] = None,
        options: Optional[StartOptions] = None,
    ) -> InstallationRecord:
        """Launch an installer for a platform that is not installed.

        Raises:
            AlreadyInstalling: an installation is running
            InvalidRequest: installed/failed (reset first), or no installer
                path, or no install path could be determined
            InstallerNotSelected: several Lutris installers and none chosen
            ExternalRunnerError: the runner could not start the installer
        """
        options = options or StartOptions()
        if not installer_path:
            raise InvalidRequest("Installer path is required")

        async with self.registry.edit(game_id) as game:
            config = _platform(game, platform_id)
            record = config.installation
            if record.status is InstallStatus.INSTALLING:
                raise AlreadyInstalling(f"{game_id}/{platform_id} is already installing")
            if record.status is not InstallStatus.NOT_INSTALLED:
                raise InvalidRequest(
                    f"{game_id}/{platform_id} is {record.status.value}, reset it before installing again"
                )

            target = install_path or self._default_install_path(game_id)
            if not target:
                raise InvalidRequest("No install path given and no volume holds the 'installed' purpose")
            target = normalize_host_path(target)

            installer = resolve_selection(config)
            if installer is not None:
                config.settings = apply_fragment(config.settings, build_fragment(installer.script))
                logger.info(f"[Install] Applied Lutris installer {installer.id} to {game_id}/{platform_id}")

            wine = config.settings.get('wine') or {}
            wine_arch = options.wine_arch or wine.get('arch')
            env = runner_env(config.settings)
            if wine_arch:
                env['WINEARCH'] = wine_arch
            env.update(options.env)

            handle = await self.runner.launch(installer_path, target, options.installer_args, env)

            updated = InstallationRecord(
                status=record.status,
                installer_path=installer_path,
                install_path=target,
                installer_args=options.installer_args,
                wine_version_id=options.wine_version_id or wine.get('version_id'),
                wine_arch=wine_arch,
                container_id=handle,
                started_at=_now(),
                download_cache_path=options.download_cache_path or record.download_cache_path,
            )
            updated.transition(InstallStatus.INSTALLING)
            config.installation = updated
            result = copy.deepcopy(updated)

        logger.info(f"[Install] Started {game_id}/{platform_id} via {self.runner.runner_name} ({handle[:12]})")
        return result

    async def poll(self, game_id: str, platform_id: str) -> InstallationRecord:
        """Reconcile a running installation with its runner.

        Records that are not installing are returned as they are.
        """
        async with self.registry.lock_for(game_id):
            snapshot = copy.deepcopy(_platform(self.registry.load(game_id), platform_id).installation)
        if snapshot.status is not InstallStatus.INSTALLING:
            return snapshot

        handle = snapshot.container_id
        if not handle:
            status = RunnerStatus.failed("Installation has no runner handle")
        else:
            try:
                status = await self.runner.status(handle)
            except ExternalRunnerError as e:
                logger.error(f"[Install] Runner status for {game_id}/{platform_id} failed: {e.message}")
                status = RunnerStatus.failed(e.message)
            except Exception as e:
                logger.error(f"[Install] Runner status for {game_id}/{platform_id} failed: {e!r}", exc_info=True)
                status = RunnerStatus.failed(f"Runner status check failed: {e!r}")

        if status.state is RunnerState.RUNNING:
            return snapshot

        async with self.registry.lock_for(game_id):
            game = self.registry.load(game_id)
            config = _platform(game, platform_id)
            record = config.installation
            if record.status is not InstallStatus.INSTALLING or record.container_id != handle:
                logger.info(f"[Install] Ignoring stale {status.state.value} for {game_id}/{platform_id}")
                return copy.deepcopy(record)

            if status.state is RunnerState.SUCCEEDED:
                record.transition(InstallStatus.INSTALLED)
                record.installed_at = _now()
                record.executables = list(status.executables)
                record.error = None
                self._fill_launch_command(config)
                logger.info(f"[Install] {game_id}/{platform_id} installed to {record.install_path}")
            else:
                record.transition(InstallStatus.FAILED)
                record.error = status.error or "Installer failed"
                logger.warning(f"[Install] {game_id}/{platform_id} failed: {record.error}")
            self.registry.save(game)
            result = copy.deepcopy(record)

        if handle:
            await self._release(handle)
        return result

    def _fill_launch_command(self, config: PlatformConfig) -> None:
        launch = config.settings.setdefault('launch', {})
        if launch.get('command'):
            return
        candidates = config.installation.executables or self.scanner(config.installation.install_path)
        if candidates:
            launch['command'] = candidates[0]
            logger.info(f"[Install] Launch command set to {candidates[0]}")

    async def _release(self, handle: str) -> None:
        try:
            await self.runner.release(handle)
        except ExternalRunnerError as e:
            logger.warning(f"[Install] Could not release runner handle {handle[:12]}: {e.message}")

    async def cancel(self, game_id: str, platform_id: str) -> InstallationRecord:
        """Stop a running installation and return to not_installed.

        The record is reset even when the runner fails to terminate.
        """
        async with self.registry.edit(game_id) as game:
            config = _platform(game, platform_id)
            record = config.installation
            if record.status is not InstallStatus.INSTALLING:
                raise InvalidRequest(f"{game_id}/{platform_id} is {record.status.value}, nothing to cancel")

            if record.container_id:
                try:
                    await self.runner.terminate(record.container_id)
                except ExternalRunnerError as e:
                    logger.error(f"[Install] Terminating {record.container_id[:12]} failed: {e.message}")
                except Exception as e:
                    logger.error(f"[Install] Terminating {record.container_id[:12]} failed: {e!r}", exc_info=True)

            record.transition(InstallStatus.NOT_INSTALLED)
            config.installation = record.cleared()
            result = copy.deepcopy(config.installation)

        logger.info(f"[Install] Cancelled {game_id}/{platform_id}")
        return result

    async def reset(self, game_id: str, platform_id: str) -> InstallationRecord:
        """Clear an installed or failed record, keeping the download cache"""
        async with self.registry.edit(game_id) as game:
            config = _platform(game, platform_id)
            record = config.installation
            if record.status not in TERMINAL_STATUSES:
                raise InvalidRequest(f"{game_id}/{platform_id} is {record.status.value}, nothing to reset")
            record.transition(InstallStatus.NOT_INSTALLED)
            config.installation = record.cleared()
            result = copy.deepcopy(config.installation)

        logger.info(f"[Install] Reset {game_id}/{platform_id}")
        return result

    async def reinstall(
        self,
        game_id: str,
        platform_id: str,
        installer_path: Optional[str] = None,
        install_path: Optional[str] = None,
        options: Optional[StartOptions] = None,
    ) -> InstallationRecord:
        """Reset (when installed or failed) and start again.

        Paths default to the ones of the previous run.
        """
        previous = self.get_record(game_id, platform_id)
        if previous.status in TERMINAL_STATUSES:
            await self.reset(game_id, platform_id)
        return await self.start(
            game_id,
            platform_id,
            installer_path or previous.installer_path,
            install_path or previous.install_path or None,
            options,
        )

    async def poll_all(self) -> List[Tuple[str, str, InstallationRecord]]:
        """Poll every installing record, returning the ones that changed state"""
        changed = []
        for game in self.registry.all_games():
            for config in game.platforms:
                if config.installation.status is not InstallStatus.INSTALLING:
                    continue
                try:
                    record = await self.poll(game.id, config.platform_id)
                except DillingerError as e:
                    # Game or platform removed since the listing
                    logger.debug(f"[Install] Skipping {game.id}/{config.platform_id}: {e.message}")
                    continue
                except Exception as e:
                    logger.error(f"[Install] Polling {game.id}/{config.platform_id} failed: {e!r}", exc_info=True)
                    continue
                if record.status is not InstallStatus.INSTALLING:
                    changed.append((game.id, config.platform_id, record))
        return changed
