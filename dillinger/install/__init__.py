# Installation lifecycle
from .lifecycle import InstallationLifecycleManager, StartOptions, runner_env

__all__ = ['InstallationLifecycleManager', 'StartOptions', 'runner_env']
