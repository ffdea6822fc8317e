"""
Lutris installer script resolution.

Turns the selected community installer script of a platform into a settings
fragment: Wine architecture, DLL overrides and the winetricks verbs to run
before the installer. The scripts themselves are never modified.

Script shape (only the parts read here):

    {
        "game": {"arch": "win64", "exe": "$GAMEDIR/drive_c/Game/game.exe"},
        "wine": {"overrides": {"d3d9": "n,b", "dinput8": "n,b"}},
        "installer": [
            {"task": {"name": "create_prefix", "prefix": "$GAMEDIR"}},
            {"task": {"name": "winetricks", "app": "vcrun2019 d3dx9"}}
        ]
    }
"""
import copy
import logging
from typing import Any, Dict, List, Optional

from dillinger.entities.game import LutrisInstaller, PlatformConfig
from dillinger.errors import InstallerNotSelected, NotFound

logger = logging.getLogger(__name__)

WINE_ARCHITECTURES = ('win32', 'win64')


def _installer_steps(script: Dict[str, Any]) -> List[Any]:
    steps = (script or {}).get('installer') or []
    return steps if isinstance(steps, list) else []


def extract_winetricks_verbs(script: Dict[str, Any]) -> List[str]:
    """Winetricks verbs of every ``winetricks`` task, in script order.

    Only a token identical to the one right before it is dropped; the
    order of the script is never changed.
    """
    verbs: List[str] = []
    for step in _installer_steps(script):
        task = step.get('task') if isinstance(step, dict) else None
        if not isinstance(task, dict) or task.get('name') != 'winetricks':
            continue
        app = task.get('app') or ''
        tokens = app.split() if isinstance(app, str) else [str(t) for t in app]
        for token in tokens:
            if verbs and verbs[-1] == token:
                continue
            verbs.append(token)
    return verbs


def extract_dll_overrides(script: Dict[str, Any]) -> List[str]:
    """Names of the DLLs overridden in ``script['wine']['overrides']``"""
    wine = (script or {}).get('wine') or {}
    overrides = wine.get('overrides') if isinstance(wine, dict) else None
    if not isinstance(overrides, dict):
        return []
    return list(overrides.keys())


def extract_architecture(script: Dict[str, Any]) -> Optional[str]:
    """``script['game']['arch']`` if it is win32/win64, else None.

    None means "not specified" and callers keep whatever architecture was
    already selected.
    """
    game = (script or {}).get('game') or {}
    arch = game.get('arch') if isinstance(game, dict) else None
    return arch if arch in WINE_ARCHITECTURES else None


def build_fragment(script: Dict[str, Any]) -> Dict[str, Any]:
    """Settings fragment derived from one installer script"""
    wine = (script or {}).get('wine') or {}
    overrides = wine.get('overrides') if isinstance(wine, dict) else None
    overrides = overrides if isinstance(overrides, dict) else {}
    return {
        'arch': extract_architecture(script),
        'dll_overrides': {name: str(overrides[name]) for name in extract_dll_overrides(script)},
        'winetricks': extract_winetricks_verbs(script),
    }


def apply_fragment(settings: Dict[str, Any], fragment: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``settings`` with the fragment merged into ``wine``.

    The architecture is only replaced when the script specifies one. DLL
    overrides from the script win over existing ones of the same name.
    """
    merged = copy.deepcopy(settings or {})
    wine = merged.setdefault('wine', {})
    if fragment.get('arch'):
        wine['arch'] = fragment['arch']
    overrides = dict(wine.get('dll_overrides') or {})
    overrides.update(fragment.get('dll_overrides') or {})
    wine['dll_overrides'] = overrides
    if fragment.get('winetricks'):
        wine['winetricks'] = list(fragment['winetricks'])
    return merged


def resolve_selection(config: PlatformConfig) -> Optional[LutrisInstaller]:
    """Installer to use for ``config``, auto-selecting a lone one.

    Returns None when the platform has no installers. Sets
    ``selected_lutris_installer_id`` on auto-selection.

    Raises:
        InstallerNotSelected: several installers and none chosen
        NotFound: the chosen id is not among the platform's installers
    """
    if not config.lutris_installers:
        return None

    if config.selected_lutris_installer_id is not None:
        installer = config.get_lutris_installer(config.selected_lutris_installer_id)
        if installer is None:
            raise NotFound(f"Selected Lutris installer {config.selected_lutris_installer_id} no longer exists")
        return installer

    if len(config.lutris_installers) == 1:
        installer = config.lutris_installers[0]
        config.selected_lutris_installer_id = installer.id
        logger.info(f"[Lutris] Auto-selected installer {installer.slug} ({installer.version})")
        return installer

    raise InstallerNotSelected(
        f"{len(config.lutris_installers)} Lutris installers available for {config.platform_id}, choose one first"
    )
