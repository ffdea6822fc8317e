"""Docker Engine API client.

Talks to the docker (or podman) daemon over its unix socket with aiohttp.
Only the calls dillinger needs are wrapped: volume listing/creation/removal
and the container lifecycle used by the installer runner.
"""

import asyncio
import logging
import struct
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from dillinger.errors import ExternalRunnerError

logger = logging.getLogger(__name__)

DEFAULT_SOCKET = "unix:///var/run/docker.sock"
# Any host works, requests are routed through the unix connector
API_BASE = "http://docker"

# Label stamped on everything dillinger creates
MANAGED_LABEL = "dillinger.managed"


def socket_path_from_url(url: str) -> str:
    """Turn ``unix:///run/user/1000/podman/podman.sock`` into a filesystem path"""
    if url.startswith("unix://"):
        return url[len("unix://"):]
    return url


def demux_docker_stream(payload: bytes) -> str:
    """Decode a multiplexed stdout/stderr log stream.

    Non-TTY containers prefix every chunk with an 8 byte header:
    stream type (1 byte), 3 bytes padding, big-endian payload length.
    Payloads that do not look multiplexed are returned as plain text.
    """
    if len(payload) < 8 or payload[0] not in (0, 1, 2) or payload[1:4] != b"\x00\x00\x00":
        return payload.decode('utf-8', errors='ignore')

    chunks = []
    offset = 0
    while offset + 8 <= len(payload):
        _, length = struct.unpack('>BxxxI', payload[offset:offset + 8])
        offset += 8
        chunks.append(payload[offset:offset + length])
        offset += length
    return b"".join(chunks).decode('utf-8', errors='ignore')


class DockerClient:
    """Minimal async Docker Engine API client"""

    def __init__(self, socket_url: str = DEFAULT_SOCKET, timeout: float = 30.0):
        self.socket_path = socket_path_from_url(socket_url)
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session bound to the daemon socket."""
        if self.session is None or self.session.closed:
            connector = aiohttp.UnixConnector(path=self.socket_path)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _request(
        self,
        method: str,
        path: str,
        expected: tuple = (200,),
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        raw: bool = False,
        missing_ok: bool = False,
    ) -> Any:
        """Issue a request and raise ExternalRunnerError on unexpected status.

        With ``missing_ok`` a 404 answer returns None instead of raising.
        """
        session = await self._get_session()
        url = f"{API_BASE}{path}"
        try:
            async with session.request(method, url, json=json_body, params=params) as response:
                if missing_ok and response.status == 404:
                    return None
                if response.status not in expected:
                    body = await response.text()
                    message = body
                    try:
                        message = (await response.json()).get('message', body)
                    except (aiohttp.ContentTypeError, ValueError):
                        pass
                    logger.error(f"[Docker] {method} {path} -> HTTP {response.status}: {message}")
                    raise ExternalRunnerError(f"Docker {method} {path} failed ({response.status}): {message}")
                if raw:
                    return await response.read()
                if response.status == 204 or response.content_length == 0:
                    return None
                if response.content_type == 'application/json':
                    return await response.json()
                return await response.text()
        except aiohttp.ClientError as e:
            logger.error(f"[Docker] {method} {path} failed: {e}")
            raise ExternalRunnerError(f"Docker daemon unreachable at {self.socket_path}: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"[Docker] {method} {path} timed out after {self.timeout}s")
            raise ExternalRunnerError(f"Docker daemon at {self.socket_path} did not answer within {self.timeout}s") from e

    async def ping(self) -> bool:
        """True when the daemon answers"""
        try:
            await self._request('GET', '/_ping')
            return True
        except ExternalRunnerError:
            return False

    # ============== VOLUMES ==============

    async def list_volumes(self) -> List[Dict[str, Any]]:
        data = await self._request('GET', '/volumes')
        return (data or {}).get('Volumes') or []

    async def create_bind_volume(self, name: str, host_path: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create a named volume backed by a host directory.

        This is a volume mount: a docker volume whose data lives at a specific
        host path rather than in docker's own storage.
        """
        body = {
            'Name': name,
            'Driver': 'local',
            'DriverOpts': {'type': 'none', 'device': host_path, 'o': 'bind'},
            'Labels': {MANAGED_LABEL: 'true', **(labels or {})},
        }
        logger.info(f"[Docker] Creating volume {name} -> {host_path}")
        return await self._request('POST', '/volumes/create', expected=(200, 201), json_body=body)

    async def inspect_volume(self, name: str) -> Optional[Dict[str, Any]]:
        """Volume details, or None when the daemon does not know the volume"""
        return await self._request('GET', f"/volumes/{quote(name, safe='')}", missing_ok=True)

    async def remove_volume(self, name: str) -> None:
        logger.info(f"[Docker] Removing volume {name}")
        await self._request('DELETE', f"/volumes/{quote(name, safe='')}", expected=(204, 404))

    # ============== CONTAINERS ==============

    async def create_container(
        self,
        image: str,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        binds: Optional[List[str]] = None,
        labels: Optional[Dict[str, str]] = None,
        working_dir: Optional[str] = None,
    ) -> str:
        """Create a container and return its id"""
        body: Dict[str, Any] = {
            'Image': image,
            'Cmd': cmd,
            'Env': [f"{k}={v}" for k, v in (env or {}).items()],
            'Labels': {MANAGED_LABEL: 'true', **(labels or {})},
            'Tty': False,
            'HostConfig': {'Binds': binds or []},
        }
        if working_dir:
            body['WorkingDir'] = working_dir
        data = await self._request('POST', '/containers/create', expected=(201,), json_body=body)
        container_id = data['Id']
        logger.info(f"[Docker] Created container {container_id[:12]} from {image}")
        return container_id

    async def start_container(self, container_id: str) -> None:
        await self._request('POST', f"/containers/{container_id}/start", expected=(204, 304))

    async def inspect_container(self, container_id: str) -> Dict[str, Any]:
        return await self._request('GET', f"/containers/{container_id}/json")

    async def container_logs(self, container_id: str, tail: int = 50) -> str:
        payload = await self._request(
            'GET',
            f"/containers/{container_id}/logs",
            params={'stdout': '1', 'stderr': '1', 'tail': str(tail)},
            raw=True,
        )
        return demux_docker_stream(payload or b"")

    async def kill_container(self, container_id: str) -> None:
        # 409: not running anymore, 404: already gone
        await self._request('POST', f"/containers/{container_id}/kill", expected=(204, 404, 409))

    async def remove_container(self, container_id: str) -> None:
        await self._request(
            'DELETE', f"/containers/{container_id}", expected=(204, 404), params={'force': 'true'}
        )
