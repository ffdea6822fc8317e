"""
Volume purpose registry.

Tracks the storage volumes dillinger manages and which one holds each
purpose (installers, downloads, installed games, ROMs). A purpose other than
``other`` belongs to at most one volume. Every change is computed on a copy
of the state, written to ``volumes.json`` in a single atomic replace and only
then swapped in, so neither in-process readers nor the file ever show two
holders for a purpose or a half-finished reassignment.

Cache file: ~/.local/share/dillinger/volumes.json
"""
import asyncio
import copy
import json
import logging
import os
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from dillinger.docker.client import DockerClient
from dillinger.entities.volume import (
    EXCLUSIVE_PURPOSES,
    StorageType,
    TrackedVolume,
    UnmanagedVolume,
    Volume,
    VolumePurpose,
    VolumeType,
    VolumeVerification,
    parse_enum,
)
from dillinger.errors import DuplicateHostPath, ExternalRunnerError, InvalidRequest, NotFound
from dillinger.utils.paths import VOLUMES_PATH, normalize_host_path, write_json_atomic

logger = logging.getLogger(__name__)


def _coerce_purpose(purpose: Union[str, VolumePurpose]) -> VolumePurpose:
    try:
        return VolumePurpose(purpose)
    except ValueError:
        raise InvalidRequest(f"Unknown volume purpose: {purpose}")


def _storage_aliases(volume: Volume) -> Set[str]:
    """Every handle under which a volume's storage can appear.

    A docker volume created by dillinger is bind-backed, so it is reachable
    both by its docker name and by its host directory.
    """
    aliases = {volume.storage_handle}
    if volume.host_path:
        aliases.add(f"bind:{normalize_host_path(volume.host_path)}")
    return aliases


class VolumePurposeRegistry:
    """
    Catalog of storage volumes with exclusive purpose assignment.

    Workflow:
        1. create() / adopt() to start tracking a volume, optionally with a purpose
        2. reassign_purpose() to move a purpose to another volume
        3. resolve_default() to find where installers, downloads etc. go
    """

    def __init__(self, path: Optional[str] = None, docker: Optional[DockerClient] = None):
        self.path = path or VOLUMES_PATH
        self.docker = docker
        self._volumes: Dict[str, TrackedVolume] = {}
        self._lock = asyncio.Lock()
        self._load()

    # ============== PERSISTENCE ==============

    def _load(self) -> None:
        if not os.path.exists(self.path):
            logger.info(f"[Volumes] No volume file at {self.path}, starting empty")
            return

        with open(self.path, 'r') as f:
            data = json.load(f)

        volumes = {v['id']: TrackedVolume.from_dict(v) for v in data.get('volumes', [])}
        defaults: Dict[str, str] = data.get('defaults', {})
        metadata: Dict[str, Dict[str, Any]] = data.get('metadata', {})

        for volume_id, meta in metadata.items():
            if volume_id in volumes and meta.get('storage_type'):
                volumes[volume_id].storage_type = parse_enum(
                    StorageType, meta['storage_type'], volumes[volume_id].storage_type
                )

        # Repair a file where two volumes claim the same purpose: the
        # registered default keeps it, everyone else drops to 'other'.
        for purpose in EXCLUSIVE_PURPOSES:
            holders = [v for v in volumes.values() if v.purpose is purpose]
            if len(holders) <= 1:
                continue
            keep = defaults.get(purpose.value) or holders[0].id
            for volume in holders:
                if volume.id != keep:
                    logger.warning(f"[Volumes] {volume.name} also claimed '{purpose.value}', resetting to 'other'")
                    volume.purpose = VolumePurpose.OTHER

        self._volumes = volumes
        logger.info(f"[Volumes] Loaded {len(self._volumes)} volumes from {self.path}")

    @staticmethod
    def _serialize(volumes: Dict[str, TrackedVolume]) -> Dict[str, Any]:
        defaults = {
            v.purpose.value: v.id for v in volumes.values() if v.purpose in EXCLUSIVE_PURPOSES
        }
        metadata = {
            v.id: {'storage_type': v.storage_type.value} for v in volumes.values() if v.storage_type
        }
        return {
            'volumes': [v.to_dict() for v in volumes.values()],
            'defaults': defaults,
            'metadata': metadata,
        }

    def _commit(self, volumes: Dict[str, TrackedVolume]) -> None:
        """Write the new state, then make it current. Disk errors propagate
        and leave the current state untouched."""
        write_json_atomic(self.path, self._serialize(volumes))
        self._volumes = volumes

    def _working_copy(self) -> Dict[str, TrackedVolume]:
        return {volume_id: copy.copy(v) for volume_id, v in self._volumes.items()}

    @staticmethod
    def _assign(volumes: Dict[str, TrackedVolume], volume_id: str, purpose: VolumePurpose) -> Optional[str]:
        """Give ``purpose`` to ``volume_id`` inside a working copy.

        Returns the id of the volume it was revoked from, if any.
        """
        revoked_from = None
        if purpose in EXCLUSIVE_PURPOSES:
            for other in volumes.values():
                if other.id != volume_id and other.purpose is purpose:
                    other.purpose = VolumePurpose.OTHER
                    revoked_from = other.id
        volumes[volume_id].purpose = purpose
        return revoked_from

    # ============== QUERIES ==============

    def list(self) -> List[TrackedVolume]:
        return [copy.copy(v) for v in self._volumes.values()]

    def get(self, volume_id: str) -> Optional[TrackedVolume]:
        volume = self._volumes.get(volume_id)
        return copy.copy(volume) if volume else None

    def resolve_default(self, purpose: Union[str, VolumePurpose]) -> Optional[TrackedVolume]:
        """Current holder of a purpose, or None if unassigned"""
        purpose = _coerce_purpose(purpose)
        if purpose is VolumePurpose.OTHER:
            return None
        for volume in self._volumes.values():
            if volume.purpose is purpose:
                return copy.copy(volume)
        return None

    def defaults(self) -> Dict[str, str]:
        """purpose -> volume id for every assigned purpose"""
        return self._serialize(self._volumes)['defaults']

    def default_path(self, purpose: Union[str, VolumePurpose], *parts: str) -> Optional[str]:
        """Host path under the volume holding ``purpose``, or None"""
        volume = self.resolve_default(purpose)
        if not volume or not volume.host_path:
            return None
        return os.path.join(volume.host_path, *parts)

    # ============== MUTATIONS ==============

    async def create(
        self,
        name: str,
        host_path: str,
        purpose: Union[str, VolumePurpose] = VolumePurpose.OTHER,
        type: Union[str, VolumeType] = VolumeType.BIND,
        storage_type: Optional[Union[str, StorageType]] = None,
        docker_name: Optional[str] = None,
        create_backing: bool = True,
    ) -> TrackedVolume:
        """Start tracking a volume, taking over ``purpose`` if another holds it.

        Args:
            name: Display name
            host_path: Directory on the host backing the volume
            purpose: Purpose to assign; a previous holder drops to 'other'
            type: 'bind' for a plain host directory, 'docker' for a named docker volume
            storage_type: Informational ssd/platter/archive tag
            docker_name: Docker volume name (docker volumes only, defaults to ``name``)
            create_backing: Create the docker volume through the daemon

        Raises:
            InvalidRequest: missing name/path or unknown enum values
            DuplicateHostPath: the storage is already tracked
            ExternalRunnerError: the docker daemon refused the volume
        """
        if not name or not host_path:
            raise InvalidRequest("Volume name and host path are required")
        purpose = _coerce_purpose(purpose)
        try:
            volume_type = VolumeType(type)
            storage = StorageType(storage_type) if storage_type else None
        except ValueError as e:
            raise InvalidRequest(str(e))

        volume = TrackedVolume(
            id=uuid.uuid4().hex,
            name=name,
            host_path=host_path,
            type=volume_type,
            purpose=VolumePurpose.OTHER,
            storage_type=storage,
            docker_name=(docker_name or name) if volume_type is VolumeType.DOCKER else None,
        )

        async with self._lock:
            new_aliases = _storage_aliases(volume)
            for existing in self._volumes.values():
                if new_aliases & _storage_aliases(existing):
                    raise DuplicateHostPath(
                        f"{host_path} is already tracked as volume '{existing.name}'"
                    )

            created_backing = False
            if volume_type is VolumeType.DOCKER and create_backing and self.docker:
                await self.docker.create_bind_volume(
                    volume.docker_name, host_path, labels={'dillinger.purpose': purpose.value}
                )
                created_backing = True

            volumes = self._working_copy()
            volumes[volume.id] = volume
            revoked_from = self._assign(volumes, volume.id, purpose)
            try:
                self._commit(volumes)
            except Exception:
                if created_backing:
                    logger.error(f"[Volumes] Could not save {name}, removing docker volume {volume.docker_name}")
                    await self._remove_backing(volume.docker_name)
                raise

        if revoked_from:
            logger.info(f"[Volumes] Purpose '{purpose.value}' moved from {revoked_from} to new volume {name}")
        logger.info(f"[Volumes] Created volume {name} ({volume_type.value}) at {host_path} for '{purpose.value}'")
        return copy.copy(volume)

    async def _remove_backing(self, docker_name: str) -> None:
        try:
            await self.docker.remove_volume(docker_name)
        except ExternalRunnerError as e:
            logger.error(f"[Volumes] Could not remove docker volume {docker_name}: {e.message}")

    async def reassign_purpose(self, volume_id: str, purpose: Union[str, VolumePurpose]) -> TrackedVolume:
        """Give ``purpose`` to ``volume_id``; any previous holder drops to 'other'"""
        purpose = _coerce_purpose(purpose)
        async with self._lock:
            if volume_id not in self._volumes:
                raise NotFound(f"Unknown volume: {volume_id}")
            volumes = self._working_copy()
            revoked_from = self._assign(volumes, volume_id, purpose)
            self._commit(volumes)
            result = copy.copy(volumes[volume_id])

        if revoked_from:
            logger.info(f"[Volumes] Purpose '{purpose.value}' moved from {revoked_from} to {volume_id}")
        else:
            logger.info(f"[Volumes] Volume {volume_id} now holds '{purpose.value}'")
        return result

    async def set_storage_type(self, volume_id: str, storage_type: Optional[Union[str, StorageType]]) -> TrackedVolume:
        try:
            storage = StorageType(storage_type) if storage_type else None
        except ValueError as e:
            raise InvalidRequest(str(e))
        async with self._lock:
            if volume_id not in self._volumes:
                raise NotFound(f"Unknown volume: {volume_id}")
            volumes = self._working_copy()
            volumes[volume_id].storage_type = storage
            self._commit(volumes)
            return copy.copy(volumes[volume_id])

    async def verify(self, volume_id: str) -> VolumeVerification:
        """Check that a tracked volume's storage still exists.

        Bind volumes need a readable and writable host directory. Docker
        volumes must still be known to the daemon, and when the daemon reports
        a bind device that directory is checked too. The check time is saved
        on the volume; a failed check changes nothing else.

        Raises:
            NotFound: unknown volume id
        """
        volume = self.get(volume_id)
        if volume is None:
            raise NotFound(f"Unknown volume: {volume_id}")

        error = None
        host_path = volume.host_path
        if volume.type is VolumeType.DOCKER:
            if self.docker is None:
                error = "No docker daemon configured to check the volume"
            else:
                try:
                    info = await self.docker.inspect_volume(volume.docker_name or volume.name)
                except ExternalRunnerError as e:
                    error = e.message
                else:
                    if info is None:
                        error = f"Docker volume {volume.docker_name or volume.name} not found"
                    else:
                        host_path = (info.get('Options') or {}).get('device') or ''

        if error is None and host_path:
            if not os.path.isdir(host_path):
                error = f"Host path {host_path} does not exist"
            elif not os.access(host_path, os.R_OK | os.W_OK):
                error = f"Host path {host_path} is not readable and writable"

        result = VolumeVerification(volume_id=volume_id, accessible=error is None, error=error)
        async with self._lock:
            if volume_id in self._volumes:
                volumes = self._working_copy()
                volumes[volume_id].last_verified = result.checked_at
                self._commit(volumes)

        if error:
            logger.warning(f"[Volumes] Volume {volume.name} failed verification: {error}")
        else:
            logger.info(f"[Volumes] Volume {volume.name} verified")
        return result

    async def remove(self, volume_id: str, delete_backing: bool = True) -> None:
        """Stop tracking a volume and delete its docker volume.

        A purpose it held becomes unassigned; no other volume is promoted.
        Deleting the backing docker volume cannot be undone.
        """
        async with self._lock:
            volume = self._volumes.get(volume_id)
            if volume is None:
                raise NotFound(f"Unknown volume: {volume_id}")

            if volume.type is VolumeType.DOCKER and delete_backing and self.docker and volume.docker_name:
                await self.docker.remove_volume(volume.docker_name)

            volumes = self._working_copy()
            del volumes[volume_id]
            self._commit(volumes)

        if volume.purpose in EXCLUSIVE_PURPOSES:
            logger.info(f"[Volumes] Purpose '{volume.purpose.value}' is now unassigned")
        logger.info(f"[Volumes] Removed volume {volume.name} ({volume_id})")

    # ============== UNMANAGED VOLUMES ==============

    def import_unmanaged(self, host_volumes: Iterable[Union[Dict[str, Any], Volume]]) -> List[UnmanagedVolume]:
        """Wrap host volumes dillinger does not track yet.

        Accepts docker ``/volumes`` entries or Volume objects. Anything whose
        storage is already tracked is skipped, matched by storage handle and
        never by display name. Nothing is persisted.
        """
        tracked: Set[str] = set()
        for volume in self._volumes.values():
            tracked |= _storage_aliases(volume)

        result: List[UnmanagedVolume] = []
        seen: Set[str] = set()
        for entry in host_volumes:
            if isinstance(entry, Volume):
                candidate = UnmanagedVolume(
                    id=entry.id if isinstance(entry, UnmanagedVolume) else f"unmanaged:{entry.docker_name or entry.name}",
                    name=entry.name,
                    host_path=entry.host_path,
                    type=entry.type,
                    purpose=VolumePurpose.OTHER,
                    storage_type=entry.storage_type,
                    docker_name=entry.docker_name,
                )
            else:
                if not entry.get('Name'):
                    continue
                candidate = UnmanagedVolume.from_docker(entry)

            aliases = _storage_aliases(candidate)
            if aliases & tracked or candidate.storage_handle in seen:
                continue
            seen.add(candidate.storage_handle)
            result.append(candidate)

        logger.debug(f"[Volumes] {len(result)} unmanaged volume(s) available for import")
        return result

    async def discover_unmanaged(self) -> List[UnmanagedVolume]:
        """List docker volumes on the host that are not tracked"""
        if not self.docker:
            return []
        return self.import_unmanaged(await self.docker.list_volumes())

    async def adopt(
        self,
        unmanaged: UnmanagedVolume,
        purpose: Union[str, VolumePurpose] = VolumePurpose.OTHER,
        name: Optional[str] = None,
    ) -> TrackedVolume:
        """Start tracking an unmanaged volume without recreating it"""
        return await self.create(
            name or unmanaged.name,
            unmanaged.host_path,
            purpose=purpose,
            type=unmanaged.type,
            storage_type=unmanaged.storage_type,
            docker_name=unmanaged.docker_name,
            create_backing=False,
        )
