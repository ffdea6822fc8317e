"""Docker installer runner.

Each installation runs in a throwaway container of the wine runner image
with the installer directory mounted read-only at ``/installer`` and the
install directory mounted at ``/install`` (also used as the WINEPREFIX).
The container id is the runner handle.
"""

import logging
import os
import shlex
from typing import Dict, List, Optional

from dillinger.docker.client import DockerClient
from dillinger.errors import ExternalRunnerError
from dillinger.runners.base import InstallerRunner, RunnerStatus
from dillinger.utils.executables import find_executables

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "dillinger-wine:latest"
INSTALL_PATH_LABEL = "dillinger.install_path"

# $0 is the installer, the rest are its arguments
ENTRYPOINT_SCRIPT = (
    'if [ -n "$DILLINGER_WINETRICKS" ]; then winetricks -q $DILLINGER_WINETRICKS; fi; '
    'exec wine "$0" "$@"'
)

RUNNING_STATES = ('created', 'running', 'restarting', 'paused')


class DockerInstallerRunner(InstallerRunner):
    """Runs installers in containers of the wine runner image"""

    def __init__(self, docker: DockerClient, image: str = DEFAULT_IMAGE):
        self.docker = docker
        self.image = image

    @property
    def runner_name(self) -> str:
        return "docker"

    def _command(self, installer_path: str, args: Optional[str]) -> List[str]:
        try:
            extra = shlex.split(args or "")
        except ValueError as e:
            raise ExternalRunnerError(f"Invalid installer arguments: {e}")
        container_installer = f"/installer/{os.path.basename(installer_path)}"
        return ['sh', '-c', ENTRYPOINT_SCRIPT, container_installer, *extra]

    async def launch(self, installer_path: str, install_path: str, args: Optional[str], env: Dict[str, str]) -> str:
        if not os.path.exists(installer_path):
            raise ExternalRunnerError(f"Installer not found: {installer_path}")
        try:
            os.makedirs(install_path, exist_ok=True)
        except OSError as e:
            raise ExternalRunnerError(f"Cannot create install directory {install_path}: {e}")

        container_env = {'WINEPREFIX': '/install', 'WINEDEBUG': '-all'}
        container_env.update(env)
        binds = [
            f"{os.path.dirname(os.path.abspath(installer_path))}:/installer:ro",
            f"{install_path}:/install:rw",
        ]

        container_id = await self.docker.create_container(
            image=self.image,
            cmd=self._command(installer_path, args),
            env=container_env,
            binds=binds,
            labels={INSTALL_PATH_LABEL: install_path},
            working_dir='/install',
        )
        try:
            await self.docker.start_container(container_id)
        except ExternalRunnerError:
            logger.error(f"[Runner] Container {container_id[:12]} failed to start, removing it")
            await self._remove_quietly(container_id)
            raise

        logger.info(f"[Runner] Installer {os.path.basename(installer_path)} running in {container_id[:12]}")
        return container_id

    async def status(self, handle: str) -> RunnerStatus:
        info = await self.docker.inspect_container(handle)
        state = info.get('State') or {}
        current = state.get('Status', '')
        if current in RUNNING_STATES:
            return RunnerStatus.running()

        exit_code = state.get('ExitCode')
        if exit_code == 0:
            labels = (info.get('Config') or {}).get('Labels') or {}
            install_path = labels.get(INSTALL_PATH_LABEL, '')
            executables = find_executables(install_path)
            if executables:
                return RunnerStatus.succeeded(executables)
            return RunnerStatus.failed("Installer finished but no executables were found")

        tail = ""
        try:
            tail = (await self.docker.container_logs(handle, tail=20)).strip()
        except ExternalRunnerError as e:
            logger.warning(f"[Runner] Could not read logs of {handle[:12]}: {e}")
        message = state.get('Error') or f"Installer exited with code {exit_code}"
        if tail:
            message = f"{message}: {tail}"
        return RunnerStatus.failed(message)

    async def terminate(self, handle: str) -> None:
        logger.info(f"[Runner] Stopping container {handle[:12]}")
        await self.docker.kill_container(handle)
        await self.docker.remove_container(handle)

    async def release(self, handle: str) -> None:
        await self.docker.remove_container(handle)

    async def _remove_quietly(self, container_id: str) -> None:
        try:
            await self.docker.remove_container(container_id)
        except ExternalRunnerError as e:
            logger.warning(f"[Runner] Could not remove container {container_id[:12]}: {e}")
