"""
Tests for launch target discovery.
"""
import json
import os

from dillinger.utils.executables import find_executables


def _write(path, size=1):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(b'\0' * size)


def test_missing_directory(tmp_path):
    assert find_executables(str(tmp_path / "nope")) == []
    assert find_executables("") == []


def test_largest_exe_first_and_installers_skipped(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "Game", "launcher.exe"), 10)
    _write(os.path.join(root, "Game", "game.exe"), 1000)
    _write(os.path.join(root, "Game", "unins000.exe"), 5000)
    _write(os.path.join(root, "_redist", "vcredist_x64.exe"), 5000)
    _write(os.path.join(root, "drive_c", "windows", "system32", "notepad.exe"), 9000)

    found = find_executables(root)

    assert found == [os.path.join(root, "Game", "game.exe"), os.path.join(root, "Game", "launcher.exe")]


def test_info_file_and_start_script_come_first(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "big.exe"), 5000)
    _write(os.path.join(root, "bin", "Game.exe"), 10)
    _write(os.path.join(root, "start.sh"))
    with open(os.path.join(root, "goggame-123.info"), 'w') as f:
        json.dump({'playTasks': [
            {'isPrimary': False, 'path': 'big.exe'},
            {'isPrimary': True, 'path': 'bin\\Game.exe'},
        ]}, f)

    found = find_executables(root)

    assert found[0] == os.path.join(root, "bin", "Game.exe")
    assert found[1] == os.path.join(root, "start.sh")
    assert found.count(os.path.join(root, "bin", "Game.exe")) == 1


def test_shortcuts_are_last(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "Desktop", "Game.lnk"))
    _write(os.path.join(root, "game.exe"))
    assert find_executables(root) == [os.path.join(root, "game.exe"), os.path.join(root, "Desktop", "Game.lnk")]
