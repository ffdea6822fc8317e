"""Dillinger file path constants and utilities."""

import json
import os


# Dillinger data directory (DILLINGER_ROOT_DIR overrides the per-user default)
DILLINGER_ROOT_ENV = "DILLINGER_ROOT_DIR"
DILLINGER_DATA_DIR = os.environ.get(
    DILLINGER_ROOT_ENV, os.path.expanduser("~/.local/share/dillinger")
)

# Persisted state
GAMES_REGISTRY_PATH = os.path.join(DILLINGER_DATA_DIR, "games_registry.json")
VOLUMES_PATH = os.path.join(DILLINGER_DATA_DIR, "volumes.json")
SETTINGS_PATH = os.path.join(DILLINGER_DATA_DIR, "settings.json")
LOG_PATH = os.path.join(DILLINGER_DATA_DIR, "dillinger.log")


def ensure_dillinger_dir() -> None:
    """Ensure the dillinger data directory exists."""
    os.makedirs(DILLINGER_DATA_DIR, exist_ok=True)


def normalize_host_path(path: str) -> str:
    """Normalize a host path so that equivalent spellings compare equal.

    Args:
        path: Host path as entered by the user or reported by docker

    Returns:
        Absolute path with user expansion, no trailing slash and collapsed
        ``..`` segments
    """
    if not path:
        return ""
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def write_json_atomic(path: str, data) -> None:
    """Write JSON to ``path`` via a temp file and rename.

    Readers either see the previous document or the new one, never a partial
    write. Errors propagate to the caller.
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w') as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)
