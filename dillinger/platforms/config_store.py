"""
Platform configuration store.

Keeps a game's list of platform configurations consistent while the user
edits them one at a time. The platform being edited is an explicit ``Draft``
handed back and forth by the caller; switching platforms commits the draft
in hand and loads the next one.

All operations work on an in-memory ``Game``. Persisting the result is the
caller's job (see ``GamesRegistry.edit``).
"""
import copy
import logging
from typing import List, Optional

from dillinger.entities.game import (
    Draft,
    Game,
    InstallStatus,
    LutrisInstaller,
    PlatformConfig,
    default_settings,
)
from dillinger.errors import AlreadyConfigured, InvalidRequest, LastPlatform, NotFound

logger = logging.getLogger(__name__)


class PlatformConfigStore:
    """Platform list operations for a single game.

    Invariant: ``game.platforms`` never holds two entries with the same
    ``platform_id``.
    """

    def __init__(self, require_platform: bool = False):
        # Embedding policy: refuse to remove a game's last platform
        self.require_platform = require_platform

    @staticmethod
    def _require_platform_id(platform_id: str) -> None:
        if not platform_id:
            raise InvalidRequest("Platform id is required")

    @staticmethod
    def _get_or_raise(game: Game, platform_id: str) -> PlatformConfig:
        config = game.get_platform(platform_id)
        if config is None:
            raise NotFound(f"Platform {platform_id} is not configured for {game.id}")
        return config

    def commit_draft(self, game: Game, draft: Draft) -> Game:
        """Merge a draft into the matching platform, appending it if new.

        Each top-level settings section present in the draft replaces the
        stored section; sections the draft leaves out are kept. ``file_path``
        is only written when the draft carries one. Installation state and
        Lutris installers are never touched here.
        """
        self._require_platform_id(draft.platform_id)
        config = game.get_platform(draft.platform_id)
        if config is None:
            config = PlatformConfig(platform_id=draft.platform_id)
            game.platforms.append(config)
            if game.default_platform_id is None:
                game.default_platform_id = config.platform_id
            logger.info(f"[Platforms] Added {draft.platform_id} to {game.id} on commit")

        if draft.settings is not None:
            for section, value in draft.settings.items():
                config.settings[section] = copy.deepcopy(value)
        if draft.file_path is not None:
            config.file_path = draft.file_path
        return game

    def select_platform(self, game: Game, platform_id: str, draft: Optional[Draft] = None) -> Draft:
        """Commit ``draft`` (if any) and return a draft for ``platform_id``.

        An unknown platform yields a fresh draft with default settings; it is
        added to the game when that draft is committed.
        """
        self._require_platform_id(platform_id)
        if draft is not None:
            self.commit_draft(game, draft)

        config = game.get_platform(platform_id)
        if config is not None:
            return Draft.from_platform(config)
        return Draft(platform_id=platform_id, settings=default_settings(), file_path=None)

    def add_platform(self, game: Game, platform_id: str, draft: Optional[Draft] = None) -> Draft:
        """Add a new platform and return its draft.

        Raises:
            AlreadyConfigured: the platform exists; use select_platform instead
        """
        self._require_platform_id(platform_id)
        if game.get_platform(platform_id) is not None:
            raise AlreadyConfigured(f"{platform_id} is already configured for {game.id}")

        if draft is not None and draft.platform_id != platform_id:
            self.commit_draft(game, draft)

        config = PlatformConfig(platform_id=platform_id)
        if draft is not None and draft.platform_id == platform_id:
            if draft.settings is not None:
                config.settings.update(copy.deepcopy(draft.settings))
            config.file_path = draft.file_path
        game.platforms.append(config)
        if game.default_platform_id is None:
            game.default_platform_id = platform_id

        logger.info(f"[Platforms] Added {platform_id} to {game.id}")
        return Draft.from_platform(config)

    def remove_platform(self, game: Game, platform_id: str, require_one: Optional[bool] = None) -> Game:
        """Remove a platform; the default moves to the first remaining one.

        Raises:
            NotFound: unknown platform
            LastPlatform: it is the last one and at least one is required
            InvalidRequest: an installation is still running for it
        """
        config = self._get_or_raise(game, platform_id)
        must_keep_one = self.require_platform if require_one is None else require_one
        if must_keep_one and len(game.platforms) == 1:
            raise LastPlatform(f"{game.id} must keep at least one platform")
        if config.installation.status is InstallStatus.INSTALLING:
            raise InvalidRequest(f"Cancel the running installation of {platform_id} before removing it")

        game.platforms = [p for p in game.platforms if p.platform_id != platform_id]
        if game.default_platform_id == platform_id:
            game.default_platform_id = game.platforms[0].platform_id if game.platforms else None

        logger.info(f"[Platforms] Removed {platform_id} from {game.id}, default is now {game.default_platform_id}")
        return game

    def set_default_platform(self, game: Game, platform_id: str) -> Game:
        self._get_or_raise(game, platform_id)
        game.default_platform_id = platform_id
        return game

    def attach_lutris_installers(self, game: Game, platform_id: str, installers: List[LutrisInstaller]) -> PlatformConfig:
        """Replace the installer scripts known for a platform.

        A previous selection survives only if the same installer id is still
        present.
        """
        config = self._get_or_raise(game, platform_id)
        config.lutris_installers = list(installers)
        selected = config.selected_lutris_installer_id
        if selected is not None and config.get_lutris_installer(selected) is None:
            logger.info(f"[Platforms] Selected Lutris installer {selected} is gone, clearing selection")
            config.selected_lutris_installer_id = None
        return config

    def select_lutris_installer(self, game: Game, platform_id: str, installer_id: Optional[str]) -> PlatformConfig:
        """Choose which Lutris installer a platform uses (None clears it)"""
        config = self._get_or_raise(game, platform_id)
        if installer_id is None:
            config.selected_lutris_installer_id = None
            return config
        if config.get_lutris_installer(installer_id) is None:
            raise NotFound(f"Lutris installer {installer_id} is not attached to {platform_id}")
        config.selected_lutris_installer_id = str(installer_id)
        return config
