from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from dillinger.registry import GamesRegistry, VolumePurposeRegistry  # noqa: E402
from dillinger.runners import InstallerRunner, RunnerStatus  # noqa: E402


class FakeRunner(InstallerRunner):
    """Installer runner whose answers are set by the test"""

    def __init__(self):
        self.launched = []
        self.statuses = {}
        self.terminated = []
        self.released = []
        self.launch_error = None
        self.status_error = None
        self.terminate_error = None
        self.status_calls = 0
        self.gate = None
        self._count = 0

    @property
    def runner_name(self) -> str:
        return "fake"

    async def launch(self, installer_path, install_path, args, env):
        await asyncio.sleep(0)
        if self.launch_error:
            raise self.launch_error
        self._count += 1
        handle = f"container-{self._count}"
        self.launched.append({
            'handle': handle,
            'installer_path': installer_path,
            'install_path': install_path,
            'args': args,
            'env': dict(env),
        })
        self.statuses[handle] = RunnerStatus.running()
        return handle

    async def status(self, handle):
        self.status_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.status_error:
            raise self.status_error
        return self.statuses[handle]

    async def terminate(self, handle):
        self.terminated.append(handle)
        if self.terminate_error:
            raise self.terminate_error

    async def release(self, handle):
        self.released.append(handle)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def games_registry(tmp_path):
    """Games registry backed by a temporary file"""
    return GamesRegistry(path=str(tmp_path / "games_registry.json"))


@pytest.fixture
def volume_registry(tmp_path):
    """Volume registry backed by a temporary file, no docker daemon"""
    return VolumePurposeRegistry(path=str(tmp_path / "volumes.json"))
