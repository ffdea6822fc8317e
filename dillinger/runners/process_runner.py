"""Local process installer runner.

Runs installers directly on the host: Windows installers through umu-run or
wine, everything else as a plain executable. Winetricks verbs requested by a
Lutris script (``DILLINGER_WINETRICKS``) are installed into the prefix first.
"""

import asyncio
import logging
import os
import shlex
import shutil
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from dillinger.errors import ExternalRunnerError
from dillinger.runners.base import InstallerRunner, RunnerStatus
from dillinger.utils.executables import find_executables

logger = logging.getLogger(__name__)

WINETRICKS_ENV = "DILLINGER_WINETRICKS"
WINDOWS_INSTALLER_EXTENSIONS = ('.exe', '.msi', '.bat')
OUTPUT_TAIL_LINES = 50


def find_wine_command() -> Optional[str]:
    """umu-run if available (same Proton/pfx layout games use), else wine"""
    return shutil.which("umu-run") or shutil.which("wine")


@dataclass
class _InstallJob:
    handle: str
    install_path: str
    task: Optional[asyncio.Task] = None
    process: Optional[asyncio.subprocess.Process] = None
    result: Optional[RunnerStatus] = None
    output: Deque[str] = field(default_factory=lambda: deque(maxlen=OUTPUT_TAIL_LINES))


class ProcessInstallerRunner(InstallerRunner):
    """Runs installers as local subprocesses"""

    def __init__(self, wine_command: Optional[str] = None, winetricks_command: Optional[str] = None):
        self.wine_command = wine_command
        self.winetricks_command = winetricks_command
        self._jobs: Dict[str, _InstallJob] = {}

    @property
    def runner_name(self) -> str:
        return "process"

    def _installer_command(self, installer_path: str, args: List[str]) -> List[str]:
        lower = installer_path.lower()
        if lower.endswith(WINDOWS_INSTALLER_EXTENSIONS):
            wine = self.wine_command or find_wine_command()
            if not wine:
                raise ExternalRunnerError("Neither umu-run nor wine found, cannot run a Windows installer")
            if lower.endswith('.msi'):
                return [wine, 'msiexec', '/i', installer_path, *args]
            return [wine, installer_path, *args]
        if lower.endswith('.sh'):
            return ['sh', installer_path, *args]
        return [installer_path, *args]

    def _winetricks_command(self, verbs: List[str]) -> Optional[List[str]]:
        wine = self.wine_command or find_wine_command()
        if wine and os.path.basename(wine).startswith('umu-run'):
            # umu-run takes winetricks as an argument, not as the command
            return [wine, 'winetricks', *verbs]
        winetricks = self.winetricks_command or shutil.which("winetricks")
        if not winetricks:
            return None
        return [winetricks, '-q', *verbs]

    async def launch(self, installer_path: str, install_path: str, args: Optional[str], env: Dict[str, str]) -> str:
        if not os.path.exists(installer_path):
            raise ExternalRunnerError(f"Installer not found: {installer_path}")

        try:
            command = self._installer_command(installer_path, shlex.split(args or ""))
        except ValueError as e:
            raise ExternalRunnerError(f"Invalid installer arguments: {e}")

        run_env = os.environ.copy()
        run_env.update(env)
        run_env.setdefault("WINEPREFIX", install_path)
        run_env.setdefault("GAMEID", "umu-0")  # Generic ID for non-game operations
        run_env.pop("LD_PRELOAD", None)

        handle = uuid.uuid4().hex
        job = _InstallJob(handle=handle, install_path=install_path)
        self._jobs[handle] = job
        job.task = asyncio.create_task(self._run(job, command, run_env))
        logger.info(f"[Runner] Started installer job {handle[:12]}: {' '.join(command)}")
        return handle

    async def _exec(self, job: _InstallJob, command: List[str], env: Dict[str, str]) -> int:
        job.process = await asyncio.create_subprocess_exec(
            *command,
            env=env,
            cwd=job.install_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        if job.process.stdout is None:
            raise ExternalRunnerError("Installer process has no output pipe")
        async for raw in job.process.stdout:
            line = raw.decode('utf-8', errors='ignore').rstrip()
            if line:
                job.output.append(line)
                logger.debug(f"[Runner] {line}")
        return await job.process.wait()

    async def _run(self, job: _InstallJob, command: List[str], env: Dict[str, str]) -> None:
        try:
            os.makedirs(job.install_path, exist_ok=True)

            verbs = env.get(WINETRICKS_ENV, "").split()
            if verbs:
                winetricks = self._winetricks_command(verbs)
                if winetricks is None:
                    logger.warning(f"[Runner] winetricks not found, skipping: {' '.join(verbs)}")
                else:
                    logger.info(f"[Runner] Installing winetricks verbs: {' '.join(verbs)}")
                    code = await self._exec(job, winetricks, env)
                    if code != 0:
                        logger.warning(f"[Runner] winetricks exited with code {code}, continuing with installer")

            code = await self._exec(job, command, env)
            if code != 0:
                tail = "\n".join(list(job.output)[-10:])
                job.result = RunnerStatus.failed(f"Installer exited with code {code}: {tail}".strip())
                return

            executables = find_executables(job.install_path)
            if executables:
                job.result = RunnerStatus.succeeded(executables)
            else:
                job.result = RunnerStatus.failed("Installer finished but no executables were found")
        except asyncio.CancelledError:
            raise
        except ExternalRunnerError as e:
            logger.error(f"[Runner] Installer job {job.handle[:12]} failed: {e.message}")
            job.result = RunnerStatus.failed(e.message)
        except OSError as e:
            logger.error(f"[Runner] Installer job {job.handle[:12]} failed: {e}")
            job.result = RunnerStatus.failed(str(e))

    async def status(self, handle: str) -> RunnerStatus:
        job = self._jobs.get(handle)
        if job is None:
            raise ExternalRunnerError(f"Unknown installer job: {handle}")
        if job.result is not None:
            return job.result
        if job.task is not None and job.task.done() and not job.task.cancelled():
            error = job.task.exception()
            if error is not None:
                return RunnerStatus.failed(str(error))
        return RunnerStatus.running()

    async def terminate(self, handle: str) -> None:
        job = self._jobs.pop(handle, None)
        if job is None:
            return

        # Capture process reference, the task may clear it while we wait
        process = job.process
        if process and process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                if process.returncode is None:
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
            except ProcessLookupError:
                pass

        if job.task and not job.task.done():
            job.task.cancel()
        logger.info(f"[Runner] Terminated installer job {handle[:12]}")

    async def release(self, handle: str) -> None:
        self._jobs.pop(handle, None)

    async def close(self) -> None:
        for handle in list(self._jobs):
            await self.terminate(handle)
