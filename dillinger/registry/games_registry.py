"""
Central game registry with JSON storage.

Holds every cataloged game together with its platform configurations and
installation records in ``games_registry.json``. Callers always receive
copies; changes become visible to others only through ``save()`` or the
``edit()`` context manager, which serializes read-modify-write cycles per game.
"""
import asyncio
import copy
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from dillinger.entities.game import Game
from dillinger.errors import AlreadyConfigured, InvalidRequest, NotFound
from dillinger.utils.paths import GAMES_REGISTRY_PATH, write_json_atomic

logger = logging.getLogger(__name__)


class GamesRegistry:
    """
    Manages the game catalog with JSON storage.

    This is the authoritative source of truth for platform settings and
    installation state. Every transition of an installation goes through
    ``edit()`` so that the check and the write happen under one per-game lock.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or GAMES_REGISTRY_PATH
        self._data: Dict[str, Dict] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._load()

    def _load(self):
        """Load registry from disk"""
        if not os.path.exists(self.path):
            logger.info(f"[Registry] No registry at {self.path}, starting empty")
            return
        with open(self.path, 'r') as f:
            data = json.load(f)
        for game_id, game_dict in data.get('games', {}).items():
            # Round-trip through the entity to normalize old or hand-edited entries
            self._data[game_id] = Game.from_dict(game_dict).to_dict()
        logger.info(f"[Registry] Loaded {len(self._data)} games from {self.path}")

    def _save(self):
        """Persist registry to disk"""
        try:
            write_json_atomic(self.path, {'games': self._data})
            logger.debug(f"[Registry] Saved {len(self._data)} games to {self.path}")
        except OSError as e:
            logger.error(f"[Registry] Failed to save {self.path}: {e}")
            raise

    def lock_for(self, game_id: str) -> asyncio.Lock:
        """Per-game lock guarding read-modify-write cycles"""
        lock = self._locks.get(game_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[game_id] = lock
        return lock

    def exists(self, game_id: str) -> bool:
        return game_id in self._data

    def load(self, game_id: str) -> Game:
        """Get a copy of a game, raising NotFound for unknown ids"""
        data = self._data.get(game_id)
        if data is None:
            raise NotFound(f"Unknown game: {game_id}")
        return Game.from_dict(copy.deepcopy(data))

    def get(self, game_id: str) -> Optional[Game]:
        data = self._data.get(game_id)
        return Game.from_dict(copy.deepcopy(data)) if data is not None else None

    def save(self, game: Game) -> None:
        """Add or replace a game and persist"""
        self._data[game.id] = game.to_dict()
        self._save()

    def create(self, game_id: str, title: str) -> Game:
        if not game_id or not title:
            raise InvalidRequest("Game id and title are required")
        if game_id in self._data:
            raise AlreadyConfigured(f"Game already exists: {game_id}")
        game = Game(id=game_id, title=title)
        self.save(game)
        logger.info(f"[Registry] Registered {game_id}: {title}")
        return game

    def remove(self, game_id: str) -> bool:
        if game_id in self._data:
            del self._data[game_id]
            self._save()
            logger.info(f"[Registry] Removed {game_id}")
            return True
        return False

    def all_games(self) -> List[Game]:
        return [Game.from_dict(copy.deepcopy(d)) for d in self._data.values()]

    def count(self) -> int:
        return len(self._data)

    @asynccontextmanager
    async def edit(self, game_id: str) -> AsyncIterator[Game]:
        """Locked read-modify-write of one game.

        The yielded game is saved when the block exits normally. If the block
        raises, nothing is written and the exception propagates.
        """
        async with self.lock_for(game_id):
            game = self.load(game_id)
            yield game
            self.save(game)


# Global singleton instance
_registry_instance: Optional[GamesRegistry] = None


def get_registry() -> GamesRegistry:
    """Get the global registry instance (singleton)"""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = GamesRegistry()
    return _registry_instance
