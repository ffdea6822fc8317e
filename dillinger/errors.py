"""Error taxonomy for dillinger operations.

Core components raise these for expected conditions. The public facade
turns them into result dicts via ``to_result()`` so callers receive
``{'success': False, 'error': <kind>, 'message': <detail>}``. Anything that is
not a ``DillingerError`` (disk failures, bugs) propagates.
"""

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    INVALID_REQUEST = "errors.invalidRequest"
    NOT_FOUND = "errors.notFound"
    ALREADY_CONFIGURED = "errors.alreadyConfigured"
    ALREADY_INSTALLING = "errors.alreadyInstalling"
    INSTALLER_NOT_SELECTED = "errors.installerNotSelected"
    DUPLICATE_HOST_PATH = "errors.duplicateHostPath"
    EXTERNAL_RUNNER_ERROR = "errors.externalRunnerError"
    LAST_PLATFORM = "errors.lastPlatform"


class DillingerError(Exception):
    """Base class for expected, user-facing failures."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value

    def to_result(self) -> Dict[str, Any]:
        return {'success': False, 'error': self.kind.value, 'message': self.message}


class InvalidRequest(DillingerError):
    kind = ErrorKind.INVALID_REQUEST


class NotFound(DillingerError):
    kind = ErrorKind.NOT_FOUND


class AlreadyConfigured(DillingerError):
    kind = ErrorKind.ALREADY_CONFIGURED


class AlreadyInstalling(DillingerError):
    kind = ErrorKind.ALREADY_INSTALLING


class InstallerNotSelected(DillingerError):
    kind = ErrorKind.INSTALLER_NOT_SELECTED


class DuplicateHostPath(DillingerError):
    kind = ErrorKind.DUPLICATE_HOST_PATH


class ExternalRunnerError(DillingerError):
    """Wraps a failure surfaced by an installer runner or the docker API."""

    kind = ErrorKind.EXTERNAL_RUNNER_ERROR


class LastPlatform(DillingerError):
    kind = ErrorKind.LAST_PLATFORM
