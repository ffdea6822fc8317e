# Installer runners
from .base import InstallerRunner, RunnerState, RunnerStatus
from .docker_runner import DockerInstallerRunner
from .process_runner import ProcessInstallerRunner

__all__ = [
    'InstallerRunner',
    'RunnerState',
    'RunnerStatus',
    'DockerInstallerRunner',
    'ProcessInstallerRunner',
]
