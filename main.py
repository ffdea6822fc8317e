import argparse
import asyncio
import functools
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from dillinger.controllers import InstallPoller
from dillinger.docker import DockerClient
from dillinger.entities import Draft, Game, InstallStatus
from dillinger.errors import DillingerError, InvalidRequest, NotFound
from dillinger.install import InstallationLifecycleManager, StartOptions
from dillinger.lutris import LutrisClient
from dillinger.platforms import PlatformConfigStore
from dillinger.registry import GamesRegistry, VolumePurposeRegistry
from dillinger.runners import DockerInstallerRunner, InstallerRunner, ProcessInstallerRunner
from dillinger.utils.paths import LOG_PATH, ensure_dillinger_dir
from dillinger.utils.settings import load_settings

logger = logging.getLogger("dillinger")


class WineSpamFilter(logging.Filter):
    """Filter out wine debug spam relayed from installer output"""
    IGNORED_PATTERNS = [
        "fixme:",
        "err:hid:",
        "using server-side synchronization",
        "stray \\",
        "skipping destruction",
        "i386-linux-gnu-capsule",
    ]

    def filter(self, record):
        msg = record.getMessage()
        return not any(p in msg for p in self.IGNORED_PATTERNS)


def setup_logging(level: str = "INFO", log_file: Optional[str] = LOG_PATH) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.addFilter(WineSpamFilter())

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True,
    )


def api_method(func):
    """Turn expected failures into ``{'success': False, ...}`` results.

    Anything that is not a DillingerError is logged and re-raised.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except DillingerError as e:
            logger.warning(f"[API] {func.__name__}: {e.kind.value} {e.message}")
            return e.to_result()
        except Exception as e:
            logger.error(f"[API] {func.__name__} failed: {e}", exc_info=True)
            raise
    return wrapper


class Dillinger:
    """Dillinger core: games, platforms, installations and volumes"""

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        registry: Optional[GamesRegistry] = None,
        volumes: Optional[VolumePurposeRegistry] = None,
        runner: Optional[InstallerRunner] = None,
        lutris: Optional[LutrisClient] = None,
        docker: Optional[DockerClient] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.volumes = volumes
        self.runner = runner
        self.lutris = lutris
        self.docker = docker
        self.platforms: Optional[PlatformConfigStore] = None
        self.lifecycle: Optional[InstallationLifecycleManager] = None
        self.poller: Optional[InstallPoller] = None
        if registry is not None and runner is not None:
            self._wire()

    def _wire(self) -> None:
        self.platforms = PlatformConfigStore(require_platform=bool(self.settings.get('require_platform')) if self.settings else False)
        self.lifecycle = InstallationLifecycleManager(self.registry, self.runner, self.volumes)

    async def _main(self, start_poller: bool = True):
        if self.settings is None:
            self.settings = load_settings()
        ensure_dillinger_dir()
        logger.info("[INIT] Starting dillinger")

        if self.docker is None:
            self.docker = DockerClient(self.settings['docker_socket'])
        if self.registry is None:
            logger.info("[INIT] Loading games registry")
            self.registry = GamesRegistry()
        if self.volumes is None:
            logger.info("[INIT] Loading volume registry")
            self.volumes = VolumePurposeRegistry(docker=self.docker)
        if self.runner is None:
            if self.settings.get('runner') == 'process':
                self.runner = ProcessInstallerRunner()
            else:
                if not await self.docker.ping():
                    logger.warning(f"[INIT] Docker daemon at {self.docker.socket_path} is not answering, installs will fail until it is up")
                self.runner = DockerInstallerRunner(self.docker, image=self.settings['wine_runner_image'])
            logger.info(f"[INIT] Using {self.runner.runner_name} installer runner")
        if self.lutris is None:
            self.lutris = LutrisClient(self.settings['lutris_api_url'])

        self._wire()
        self.poller = InstallPoller(
            self.lifecycle,
            poll_interval=float(self.settings['poll_interval']),
            error_backoff=float(self.settings['error_backoff']),
        )
        if start_poller:
            await self.poller.start()
        logger.info(f"[INIT] Ready with {self.registry.count()} games and {len(self.volumes.list())} volumes")

    async def _unload(self):
        """Cleanup on shutdown"""
        logger.info("[UNLOAD] Stopping install poller")
        if self.poller:
            await self.poller.stop()
        if self.runner:
            await self.runner.close()
        if self.lutris:
            await self.lutris.close()
        if self.docker:
            await self.docker.close()
        logger.info("[UNLOAD] dillinger stopped")

    # ============== GAMES API ==============

    @api_method
    async def create_game(self, game_id: str, title: str) -> Dict[str, Any]:
        game = self.registry.create(game_id, title)
        return {'success': True, 'game': game.to_dict()}

    @api_method
    async def get_game(self, game_id: str) -> Dict[str, Any]:
        return {'success': True, 'game': self.registry.load(game_id).to_dict()}

    @api_method
    async def list_games(self) -> Dict[str, Any]:
        games = [g.to_dict() for g in self.registry.all_games()]
        return {'success': True, 'games': games, 'count': len(games)}

    @api_method
    async def delete_game(self, game_id: str) -> Dict[str, Any]:
        async with self.registry.lock_for(game_id):
            game = self.registry.load(game_id)
            busy = [p.platform_id for p in game.platforms if p.installation.status is InstallStatus.INSTALLING]
            if busy:
                raise InvalidRequest(f"Cancel running installations first: {', '.join(busy)}")
            self.registry.remove(game_id)
        return {'success': True}

    # ============== PLATFORMS API ==============

    @staticmethod
    def _draft(draft: Optional[Dict[str, Any]]) -> Optional[Draft]:
        if draft is None:
            return None
        if not isinstance(draft, dict) or not draft.get('platform_id'):
            raise InvalidRequest("Draft must carry a platform_id")
        return Draft.from_dict(draft)

    @api_method
    async def select_platform(self, game_id: str, platform_id: str, draft: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Commit the draft in hand and open ``platform_id`` for editing"""
        async with self.registry.edit(game_id) as game:
            new_draft = self.platforms.select_platform(game, platform_id, self._draft(draft))
        return {'success': True, 'draft': new_draft.to_dict()}

    @api_method
    async def add_platform(self, game_id: str, platform_id: str, draft: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with self.registry.edit(game_id) as game:
            new_draft = self.platforms.add_platform(game, platform_id, self._draft(draft))
            default = game.default_platform_id
        return {'success': True, 'draft': new_draft.to_dict(), 'default_platform_id': default}

    @api_method
    async def remove_platform(self, game_id: str, platform_id: str) -> Dict[str, Any]:
        async with self.registry.edit(game_id) as game:
            self.platforms.remove_platform(game, platform_id)
            result = game.to_dict()
        return {'success': True, 'game': result}

    @api_method
    async def commit_draft(self, game_id: str, draft: Dict[str, Any]) -> Dict[str, Any]:
        async with self.registry.edit(game_id) as game:
            self.platforms.commit_draft(game, self._draft(draft))
            result = game.to_dict()
        return {'success': True, 'game': result}

    @api_method
    async def set_default_platform(self, game_id: str, platform_id: str) -> Dict[str, Any]:
        async with self.registry.edit(game_id) as game:
            self.platforms.set_default_platform(game, platform_id)
        return {'success': True, 'default_platform_id': platform_id}

    @api_method
    async def select_lutris_installer(self, game_id: str, platform_id: str, installer_id: Optional[str]) -> Dict[str, Any]:
        async with self.registry.edit(game_id) as game:
            config = self.platforms.select_lutris_installer(game, platform_id, installer_id)
            selected = config.selected_lutris_installer_id
        return {'success': True, 'selected_lutris_installer_id': selected}

    @api_method
    async def refresh_lutris_installers(self, game_id: str, platform_id: str, slug: Optional[str] = None) -> Dict[str, Any]:
        """Fetch installer scripts from lutris.net and attach them to a platform"""
        # Fail early for unknown games before going to the network
        game = self.registry.load(game_id)
        if game.get_platform(platform_id) is None:
            raise NotFound(f"Platform {platform_id} is not configured for {game_id}")

        installers = await self.lutris.fetch_installers(slug or game_id)
        async with self.registry.edit(game_id) as game:
            config = self.platforms.attach_lutris_installers(game, platform_id, installers)
            selected = config.selected_lutris_installer_id
        return {
            'success': True,
            'installers': [i.to_dict() for i in installers],
            'selected_lutris_installer_id': selected,
        }

    # ============== INSTALLATION API ==============

    @api_method
    async def start_install(
        self,
        game_id: str,
        platform_id: str,
        installer_path: str,
        install_path: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record = await self.lifecycle.start(
            game_id, platform_id, installer_path, install_path, StartOptions.from_dict(options)
        )
        return {'success': True, 'installation': record.to_dict()}

    @api_method
    async def poll_install(self, game_id: str, platform_id: str) -> Dict[str, Any]:
        record = await self.lifecycle.poll(game_id, platform_id)
        return {'success': True, 'installation': record.to_dict()}

    @api_method
    async def cancel_install(self, game_id: str, platform_id: str) -> Dict[str, Any]:
        record = await self.lifecycle.cancel(game_id, platform_id)
        return {'success': True, 'installation': record.to_dict()}

    @api_method
    async def reset_install(self, game_id: str, platform_id: str) -> Dict[str, Any]:
        record = await self.lifecycle.reset(game_id, platform_id)
        return {'success': True, 'installation': record.to_dict()}

    @api_method
    async def reinstall(
        self,
        game_id: str,
        platform_id: str,
        installer_path: Optional[str] = None,
        install_path: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record = await self.lifecycle.reinstall(
            game_id, platform_id, installer_path, install_path, StartOptions.from_dict(options)
        )
        return {'success': True, 'installation': record.to_dict()}

    # ============== VOLUMES API ==============

    @api_method
    async def create_volume(
        self,
        name: str,
        host_path: str,
        purpose: str = 'other',
        type: str = 'bind',
        storage_type: Optional[str] = None,
        docker_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        volume = await self.volumes.create(
            name, host_path, purpose=purpose, type=type, storage_type=storage_type, docker_name=docker_name
        )
        return {'success': True, 'volume': volume.to_dict()}

    @api_method
    async def reassign_volume_purpose(self, volume_id: str, purpose: str) -> Dict[str, Any]:
        volume = await self.volumes.reassign_purpose(volume_id, purpose)
        return {'success': True, 'volume': volume.to_dict(), 'defaults': self.volumes.defaults()}

    @api_method
    async def set_volume_storage_type(self, volume_id: str, storage_type: Optional[str]) -> Dict[str, Any]:
        volume = await self.volumes.set_storage_type(volume_id, storage_type)
        return {'success': True, 'volume': volume.to_dict()}

    @api_method
    async def import_unmanaged_volumes(self, host_volumes: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Untracked host volumes; asks the docker daemon when none are given"""
        if host_volumes is None:
            unmanaged = await self.volumes.discover_unmanaged()
        else:
            unmanaged = self.volumes.import_unmanaged(host_volumes)
        return {'success': True, 'volumes': [v.to_dict() for v in unmanaged]}

    @api_method
    async def adopt_volume(self, unmanaged_id: str, purpose: str = 'other', name: Optional[str] = None) -> Dict[str, Any]:
        for candidate in await self.volumes.discover_unmanaged():
            if candidate.id == unmanaged_id:
                volume = await self.volumes.adopt(candidate, purpose, name)
                return {'success': True, 'volume': volume.to_dict()}
        raise NotFound(f"Unknown unmanaged volume: {unmanaged_id}")

    @api_method
    async def verify_volume(self, volume_id: str) -> Dict[str, Any]:
        verification = await self.volumes.verify(volume_id)
        return {'success': True, 'verification': verification.to_dict(), 'volume': self.volumes.get(volume_id).to_dict()}

    @api_method
    async def remove_volume(self, volume_id: str) -> Dict[str, Any]:
        await self.volumes.remove(volume_id)
        return {'success': True, 'defaults': self.volumes.defaults()}

    @api_method
    async def resolve_default_volume(self, purpose: str) -> Dict[str, Any]:
        volume = self.volumes.resolve_default(purpose)
        return {'success': True, 'volume': volume.to_dict() if volume else None}

    @api_method
    async def list_volumes(self) -> Dict[str, Any]:
        return {
            'success': True,
            'volumes': [v.to_dict() for v in self.volumes.list()],
            'defaults': self.volumes.defaults(),
        }


def _summarize_game(game: Game) -> str:
    parts = []
    for config in game.platforms:
        marker = "*" if config.platform_id == game.default_platform_id else " "
        parts.append(f"{marker}{config.platform_id}={config.installation.status.value}")
    return f"{game.id}\t{game.title}\t{' '.join(parts)}"


async def _run_cli(args: argparse.Namespace) -> int:
    app = Dillinger()
    await app._main(start_poller=False)
    try:
        if args.command == 'games':
            games = app.registry.all_games()
            if args.json:
                print(json.dumps([g.to_dict() for g in games], indent=2))
            else:
                for game in games:
                    print(_summarize_game(game))
        elif args.command == 'volumes':
            result = await app.list_volumes()
            if args.json:
                print(json.dumps(result, indent=2))
            else:
                defaults = {v: k for k, v in result['defaults'].items()}
                for volume in result['volumes']:
                    held = defaults.get(volume['id'], '-')
                    print(f"{volume['id']}\t{volume['name']}\t{volume['type']}\t{volume['host_path']}\t{held}")
        elif args.command == 'poll':
            changed = await app.lifecycle.poll_all()
            for game_id, platform_id, record in changed:
                print(f"{game_id}/{platform_id}\t{record.status.value}\t{record.error or ''}")
    finally:
        await app._unload()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dillinger", description="Dillinger game installation manager")
    parser.add_argument('--json', action='store_true', help="Print raw JSON")
    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('games', help="List cataloged games and installation states")
    subparsers.add_parser('volumes', help="List tracked volumes and purpose defaults")
    subparsers.add_parser('poll', help="Reconcile running installations once")
    args = parser.parse_args(argv)

    settings = load_settings()
    setup_logging(settings.get('log_level', 'INFO'))
    return asyncio.run(_run_cli(args))


if __name__ == "__main__":
    sys.exit(main())
