"""
Base InstallerRunner class defining the interface for installer executors.

A runner starts an installer somewhere else (a container, a local process)
and reports on it when asked. The lifecycle manager never waits on a runner;
it launches, then polls ``status()`` until the runner reports a result.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class RunnerState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunnerStatus:
    """What a runner knows about one installer run"""
    state: RunnerState
    executables: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def running(cls) -> 'RunnerStatus':
        return cls(RunnerState.RUNNING)

    @classmethod
    def succeeded(cls, executables: List[str]) -> 'RunnerStatus':
        return cls(RunnerState.SUCCEEDED, executables=list(executables))

    @classmethod
    def failed(cls, error: str) -> 'RunnerStatus':
        return cls(RunnerState.FAILED, error=error)


class InstallerRunner(ABC):
    """
    Abstract base class for installer runners.

    Each runner (docker container, local process) implements this interface
    so the lifecycle manager can treat them as opaque asynchronous executors.
    """

    @property
    @abstractmethod
    def runner_name(self) -> str:
        """Return the runner identifier (e.g., 'docker', 'process')"""
        pass

    @abstractmethod
    async def launch(
        self,
        installer_path: str,
        install_path: str,
        args: Optional[str],
        env: Dict[str, str],
    ) -> str:
        """
        Start an installer.

        Args:
            installer_path: Installer executable on the host
            install_path: Host directory the game is installed into
            args: Extra installer arguments (shell-style string)
            env: Environment for the installer (WINEARCH, WINEDLLOVERRIDES, ...)

        Returns:
            Opaque handle used for status/terminate.

        Raises:
            ExternalRunnerError: the installer could not be started.
        """
        pass

    @abstractmethod
    async def status(self, handle: str) -> RunnerStatus:
        """
        Report on a launched installer.

        Raises:
            ExternalRunnerError: the runner itself could not be queried.
        """
        pass

    @abstractmethod
    async def terminate(self, handle: str) -> None:
        """Stop an installer. May raise ExternalRunnerError."""
        pass

    async def release(self, handle: str) -> None:
        """Free whatever the runner keeps for a finished run. Default: nothing."""
        return None

    async def close(self) -> None:
        return None
