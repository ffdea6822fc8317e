# Background controllers
from .install_poller import InstallPoller

__all__ = ['InstallPoller']
