"""Launch target discovery for installed games.

Given an install directory, find the files a game is most likely started
from, best candidate first:

1. the primary play task of a ``goggame-*.info`` file
2. ``start.sh`` (native Linux installs)
3. ``.exe`` files, largest first, skipping uninstallers, setup programs and
   redistributables
4. ``.lnk`` shortcuts the installer dropped into the tree
"""

import glob
import json
import logging
import os
from typing import List, Tuple

logger = logging.getLogger(__name__)

SKIP_PATTERNS = ['unins', 'setup', 'install', 'crash', 'redist', 'vcredist',
                 'vc_redist', 'dxsetup', 'physx', 'dotnet', 'directx']

# Wine prefixes contain hundreds of system executables
SKIP_DIRS = ('/drive_c/windows/', '/drive_c/Program Files/Common Files/',
             '/drive_c/Program Files (x86)/Common Files/')


def _is_candidate(path: str) -> bool:
    basename = os.path.basename(path).lower()
    if any(skip in basename for skip in SKIP_PATTERNS):
        return False
    normalized = path.replace('\\', '/')
    return not any(skip_dir in normalized for skip_dir in SKIP_DIRS)


def _from_info_file(install_path: str) -> List[str]:
    for info_file in glob.glob(os.path.join(install_path, '**', 'goggame-*.info'), recursive=True):
        try:
            with open(info_file, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"[Scanner] Error reading info file {info_file}: {e}")
            continue
        for task in data.get('playTasks', []):
            if task.get('isPrimary') and task.get('path'):
                exe = os.path.join(os.path.dirname(info_file), task['path'].replace('\\', '/'))
                if os.path.exists(exe):
                    return [exe]
    return []


def find_executables(install_path: str) -> List[str]:
    """Candidate launch targets under ``install_path``, best first"""
    if not install_path or not os.path.isdir(install_path):
        logger.warning(f"[Scanner] Install path does not exist: {install_path}")
        return []

    found: List[str] = []
    found.extend(_from_info_file(install_path))

    start_sh = os.path.join(install_path, 'start.sh')
    if os.path.exists(start_sh):
        found.append(start_sh)

    exe_candidates: List[Tuple[str, int]] = []
    for exe_path in glob.glob(os.path.join(install_path, '**', '*.exe'), recursive=True):
        if not _is_candidate(exe_path):
            continue
        try:
            exe_candidates.append((exe_path, os.path.getsize(exe_path)))
        except OSError:
            continue
    # Largest is most likely the game
    exe_candidates.sort(key=lambda x: x[1], reverse=True)
    found.extend(path for path, _ in exe_candidates)

    for lnk_path in sorted(glob.glob(os.path.join(install_path, '**', '*.lnk'), recursive=True)):
        if _is_candidate(lnk_path):
            found.append(lnk_path)

    # Keep first occurrence
    unique = list(dict.fromkeys(found))
    logger.info(f"[Scanner] Found {len(unique)} launch candidate(s) in {install_path}")
    return unique

