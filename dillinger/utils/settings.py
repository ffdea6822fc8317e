"""Dillinger settings helpers.

Settings live in ``settings.json`` inside the data directory and are merged
over ``DEFAULT_SETTINGS`` on load, so a partial or missing file still yields a
complete configuration.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from .paths import SETTINGS_PATH, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    # Seconds between reconciliation passes of the install poller
    'poll_interval': 3.0,
    # Seconds to wait after a failed reconciliation pass
    'error_backoff': 10.0,
    # 'docker' runs installers in the wine runner image, 'process' runs them locally
    'runner': 'docker',
    'docker_socket': 'unix:///var/run/docker.sock',
    'wine_runner_image': 'dillinger-wine:latest',
    # When True a game must always keep at least one platform
    'require_platform': False,
    'log_level': 'INFO',
    'lutris_api_url': 'https://lutris.net/api/installers',
}


def load_settings(path: Optional[str] = None) -> Dict[str, Any]:
    """Load settings from disk merged over the defaults.

    A missing file yields the defaults. A file that exists but cannot be
    parsed is logged and ignored so a typo never prevents startup.
    """
    settings_path = path or SETTINGS_PATH
    settings = dict(DEFAULT_SETTINGS)
    if not os.path.exists(settings_path):
        return settings

    try:
        with open(settings_path, 'r') as f:
            stored = json.load(f)
        if isinstance(stored, dict):
            settings.update(stored)
        else:
            logger.warning(f"[Settings] Ignoring non-object settings file: {settings_path}")
    except json.JSONDecodeError as e:
        logger.error(f"[Settings] Could not parse {settings_path}: {e}")
    return settings


def save_settings(settings: Dict[str, Any], path: Optional[str] = None) -> None:
    """Persist settings. Only keys that differ from the defaults are written."""
    settings_path = path or SETTINGS_PATH
    changed = {k: v for k, v in settings.items() if DEFAULT_SETTINGS.get(k) != v}
    write_json_atomic(settings_path, changed)
    logger.info(f"[Settings] Saved {len(changed)} setting(s) to {settings_path}")


def get_setting(key: str, path: Optional[str] = None) -> Any:
    return load_settings(path).get(key)


def set_setting(key: str, value: Any, path: Optional[str] = None) -> None:
    settings = load_settings(path)
    settings[key] = value
    save_settings(settings, path)
