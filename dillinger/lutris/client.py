"""lutris.net installer script client."""

import asyncio
import logging
import ssl
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
import certifi

from dillinger.entities.game import LutrisInstaller

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://lutris.net/api/installers"


class LutrisClient:
    """Fetches community installer scripts for a game slug."""

    def __init__(self, api_url: str = DEFAULT_API_URL):
        self.api_url = api_url.rstrip('/')
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context, limit_per_host=5)
            self.session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": "dillinger"}
            )
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    @staticmethod
    def parse_installers(data: Any) -> List[LutrisInstaller]:
        """Accepts either a bare list or a paginated ``{"results": [...]}`` body"""
        entries = data.get('results', []) if isinstance(data, dict) else data
        installers = []
        for entry in entries or []:
            if not isinstance(entry, dict) or 'id' not in entry:
                continue
            installers.append(LutrisInstaller.from_dict({
                'id': entry['id'],
                'slug': entry.get('slug', ''),
                'version': entry.get('version', ''),
                'notes': entry.get('notes') or entry.get('description'),
                'script': entry.get('script') or {},
            }))
        return installers

    async def fetch_installers(self, game_slug: str) -> List[LutrisInstaller]:
        """Installer scripts published for ``game_slug``.

        Network and HTTP failures are logged and yield an empty list.
        """
        url = f"{self.api_url}/{quote(game_slug, safe='')}"
        try:
            session = await self._get_session()
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=15)) as response:
                if response.status != 200:
                    logger.warning(f"[Lutris] {url} returned HTTP {response.status}")
                    return []
                data: Dict[str, Any] = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[Lutris] Failed to fetch installers for {game_slug}: {e}")
            return []

        installers = self.parse_installers(data)
        logger.info(f"[Lutris] Found {len(installers)} installer(s) for {game_slug}")
        return installers
