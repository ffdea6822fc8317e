# Utils package
from .paths import (
    ensure_dillinger_dir,
    normalize_host_path,
    write_json_atomic,
    DILLINGER_DATA_DIR,
    GAMES_REGISTRY_PATH,
    VOLUMES_PATH,
    SETTINGS_PATH,
    LOG_PATH,
)

__all__ = [
    'ensure_dillinger_dir',
    'normalize_host_path',
    'write_json_atomic',
    'DILLINGER_DATA_DIR',
    'GAMES_REGISTRY_PATH',
    'VOLUMES_PATH',
    'SETTINGS_PATH',
    'LOG_PATH',
]
