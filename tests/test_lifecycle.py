"""
Tests for InstallationLifecycleManager state transitions and reconciliation.
"""
import asyncio
import os

import pytest

from dillinger.entities import InstallStatus, LutrisInstaller
from dillinger.errors import (
    AlreadyInstalling,
    ExternalRunnerError,
    InstallerNotSelected,
    InvalidRequest,
)
from dillinger.install import InstallationLifecycleManager, StartOptions, runner_env
from dillinger.platforms import PlatformConfigStore
from dillinger.runners import RunnerStatus

GAME = "celeste"
PLATFORM = "windows-wine"


@pytest.fixture
def lifecycle(games_registry, volume_registry, runner):
    games_registry.create(GAME, "Celeste")
    game = games_registry.load(GAME)
    PlatformConfigStore().add_platform(game, PLATFORM)
    games_registry.save(game)
    return InstallationLifecycleManager(games_registry, runner, volume_registry, scanner=lambda path: [])


def _stored(registry, game_id=GAME, platform_id=PLATFORM):
    return registry.load(game_id).get_platform(platform_id)


@pytest.mark.asyncio
async def test_install_scenario(lifecycle, runner, games_registry):
    """start -> installing, succeeded -> installed, cancel on installed is refused"""
    record = await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")

    assert record.status == InstallStatus.INSTALLING
    assert record.container_id == "container-1"
    assert record.started_at is not None
    assert record.error is None

    runner.statuses["container-1"] = RunnerStatus.succeeded(["game.exe"])
    record = await lifecycle.poll(GAME, PLATFORM)

    assert record.status == InstallStatus.INSTALLED
    assert record.installed_at is not None
    assert record.executables == ["game.exe"]
    assert runner.released == ["container-1"]

    config = _stored(games_registry)
    assert config.installation.status == InstallStatus.INSTALLED
    assert config.settings['launch']['command'] == "game.exe"

    with pytest.raises(InvalidRequest):
        await lifecycle.cancel(GAME, PLATFORM)


@pytest.mark.asyncio
async def test_poll_is_noop_for_terminal_records(lifecycle, runner):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.statuses["container-1"] = RunnerStatus.failed("exit code 1")
    first = await lifecycle.poll(GAME, PLATFORM)
    calls = runner.status_calls

    runner.statuses["container-1"] = RunnerStatus.succeeded(["game.exe"])
    second = await lifecycle.poll(GAME, PLATFORM)

    assert first.status == InstallStatus.FAILED
    assert second.status == InstallStatus.FAILED
    assert second.error == "exit code 1"
    assert runner.status_calls == calls


@pytest.mark.asyncio
async def test_poll_while_running_leaves_record(lifecycle, runner):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    record = await lifecycle.poll(GAME, PLATFORM)
    assert record.status == InstallStatus.INSTALLING
    assert record.container_id == "container-1"
    assert runner.released == []


@pytest.mark.asyncio
async def test_poll_not_installed_does_not_call_runner(lifecycle, runner):
    record = await lifecycle.poll(GAME, PLATFORM)
    assert record.status == InstallStatus.NOT_INSTALLED
    assert runner.status_calls == 0


@pytest.mark.asyncio
async def test_runner_error_during_poll_marks_failed(lifecycle, runner, games_registry):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.status_error = ExternalRunnerError("daemon unreachable")

    record = await lifecycle.poll(GAME, PLATFORM)

    assert record.status == InstallStatus.FAILED
    assert record.error == "daemon unreachable"
    assert _stored(games_registry).installation.error == "daemon unreachable"


@pytest.mark.asyncio
async def test_runner_timeout_during_poll_marks_failed(lifecycle, runner, games_registry):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.status_error = asyncio.TimeoutError()

    record = await lifecycle.poll(GAME, PLATFORM)

    assert record.status == InstallStatus.FAILED
    assert "TimeoutError" in record.error
    assert _stored(games_registry).installation.status == InstallStatus.FAILED
    assert runner.released == ["container-1"]


@pytest.mark.asyncio
async def test_cancel_resets_even_if_terminate_fails(lifecycle, runner, games_registry):
    await lifecycle.start(
        GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste",
        StartOptions(download_cache_path="/cache/celeste"),
    )
    runner.terminate_error = ExternalRunnerError("no such container")

    record = await lifecycle.cancel(GAME, PLATFORM)

    assert runner.terminated == ["container-1"]
    assert record.status == InstallStatus.NOT_INSTALLED
    assert record.container_id is None
    assert record.download_cache_path == "/cache/celeste"
    assert _stored(games_registry).installation.status == InstallStatus.NOT_INSTALLED


@pytest.mark.asyncio
async def test_cancel_resets_when_terminate_times_out(lifecycle, runner, games_registry):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.terminate_error = asyncio.TimeoutError()

    record = await lifecycle.cancel(GAME, PLATFORM)

    assert record.status == InstallStatus.NOT_INSTALLED
    assert _stored(games_registry).installation.status == InstallStatus.NOT_INSTALLED
    assert _stored(games_registry).installation.container_id is None


@pytest.mark.asyncio
async def test_cancel_when_not_installing_is_invalid(lifecycle):
    with pytest.raises(InvalidRequest):
        await lifecycle.cancel(GAME, PLATFORM)


@pytest.mark.asyncio
async def test_stale_completion_after_cancel_is_ignored(lifecycle, runner, games_registry):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.statuses["container-1"] = RunnerStatus.succeeded(["game.exe"])
    runner.gate = asyncio.Event()

    poll_task = asyncio.create_task(lifecycle.poll(GAME, PLATFORM))
    for _ in range(5):
        await asyncio.sleep(0)
    assert runner.status_calls == 1

    await lifecycle.cancel(GAME, PLATFORM)
    runner.gate.set()
    record = await poll_task

    assert record.status == InstallStatus.NOT_INSTALLED
    assert _stored(games_registry).installation.status == InstallStatus.NOT_INSTALLED
    assert runner.released == []


@pytest.mark.asyncio
async def test_concurrent_start_only_one_wins(lifecycle, runner):
    results = await asyncio.gather(
        lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste"),
        lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste"),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyInstalling)
    assert len(runner.launched) == 1


@pytest.mark.asyncio
async def test_start_from_failed_requires_reset(lifecycle, runner):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste",
                          StartOptions(download_cache_path="/cache/celeste"))
    runner.statuses["container-1"] = RunnerStatus.failed("boom")
    await lifecycle.poll(GAME, PLATFORM)

    with pytest.raises(InvalidRequest):
        await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")

    record = await lifecycle.reset(GAME, PLATFORM)
    assert record.status == InstallStatus.NOT_INSTALLED
    assert record.error is None
    assert record.installer_path == ""
    assert record.download_cache_path == "/cache/celeste"

    record = await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    assert record.status == InstallStatus.INSTALLING
    assert record.download_cache_path == "/cache/celeste"


@pytest.mark.asyncio
async def test_reset_from_not_installed_is_invalid(lifecycle):
    with pytest.raises(InvalidRequest):
        await lifecycle.reset(GAME, PLATFORM)


@pytest.mark.asyncio
async def test_launch_failure_leaves_not_installed(lifecycle, runner, games_registry):
    runner.launch_error = ExternalRunnerError("image not found")

    with pytest.raises(ExternalRunnerError):
        await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")

    assert _stored(games_registry).installation.status == InstallStatus.NOT_INSTALLED


@pytest.mark.asyncio
async def test_start_requires_installer_path(lifecycle):
    with pytest.raises(InvalidRequest):
        await lifecycle.start(GAME, PLATFORM, "", "/games/celeste")


@pytest.mark.asyncio
async def test_install_path_defaults_to_installed_volume(lifecycle, runner, volume_registry, tmp_path):
    games_dir = tmp_path / "games"
    await volume_registry.create("games", str(games_dir), purpose="installed")

    record = await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe")

    assert record.install_path == os.path.join(str(games_dir), GAME)
    assert runner.launched[0]['install_path'] == os.path.join(str(games_dir), GAME)


@pytest.mark.asyncio
async def test_missing_install_path_without_volume_is_invalid(lifecycle, runner):
    with pytest.raises(InvalidRequest):
        await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe")
    assert runner.launched == []


@pytest.mark.asyncio
async def test_single_lutris_installer_is_auto_selected(lifecycle, runner, games_registry):
    script = {
        'game': {'arch': 'win32'},
        'wine': {'overrides': {'d3d9': 'n,b'}},
        'installer': [{'task': {'name': 'winetricks', 'app': 'vcrun2019 corefonts'}}],
    }
    game = games_registry.load(GAME)
    PlatformConfigStore().attach_lutris_installers(
        game, PLATFORM, [LutrisInstaller(id="101", slug="celeste-gog", version="GOG", script=script)]
    )
    games_registry.save(game)

    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")

    env = runner.launched[0]['env']
    assert env['WINEARCH'] == 'win32'
    assert env['WINEDLLOVERRIDES'] == 'd3d9=n,b'
    assert env['DILLINGER_WINETRICKS'] == 'vcrun2019 corefonts'

    config = _stored(games_registry)
    assert config.selected_lutris_installer_id == "101"
    assert config.settings['wine']['arch'] == 'win32'
    assert config.settings['wine']['dll_overrides'] == {'d3d9': 'n,b'}
    assert config.installation.wine_arch == 'win32'


@pytest.mark.asyncio
async def test_ambiguous_lutris_installers_need_selection(lifecycle, runner, games_registry):
    game = games_registry.load(GAME)
    PlatformConfigStore().attach_lutris_installers(game, PLATFORM, [
        LutrisInstaller(id="101", slug="celeste-gog", version="GOG"),
        LutrisInstaller(id="102", slug="celeste-steam", version="Steam"),
    ])
    games_registry.save(game)

    with pytest.raises(InstallerNotSelected):
        await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")

    assert runner.launched == []
    assert _stored(games_registry).installation.status == InstallStatus.NOT_INSTALLED


@pytest.mark.asyncio
async def test_existing_launch_command_is_kept(lifecycle, runner, games_registry):
    game = games_registry.load(GAME)
    game.get_platform(PLATFORM).settings['launch']['command'] = "custom.exe"
    games_registry.save(game)

    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.statuses["container-1"] = RunnerStatus.succeeded(["game.exe"])
    await lifecycle.poll(GAME, PLATFORM)

    assert _stored(games_registry).settings['launch']['command'] == "custom.exe"


@pytest.mark.asyncio
async def test_reinstall_restarts_with_previous_paths(lifecycle, runner):
    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    runner.statuses["container-1"] = RunnerStatus.succeeded(["game.exe"])
    await lifecycle.poll(GAME, PLATFORM)

    record = await lifecycle.reinstall(GAME, PLATFORM)

    assert record.status == InstallStatus.INSTALLING
    assert record.container_id == "container-2"
    assert runner.launched[1]['installer_path'] == "/downloads/setup.exe"
    assert runner.launched[1]['install_path'] == "/games/celeste"


@pytest.mark.asyncio
async def test_poll_all_reports_finished_installs(lifecycle, runner, games_registry):
    games_registry.create("hades", "Hades")
    game = games_registry.load("hades")
    PlatformConfigStore().add_platform(game, PLATFORM)
    games_registry.save(game)

    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    await lifecycle.start("hades", PLATFORM, "/downloads/hades.exe", "/games/hades")
    runner.statuses["container-2"] = RunnerStatus.succeeded(["Hades.exe"])

    changed = await lifecycle.poll_all()

    assert [(g, p, r.status) for g, p, r in changed] == [("hades", PLATFORM, InstallStatus.INSTALLED)]
    assert _stored(games_registry).installation.status == InstallStatus.INSTALLING


@pytest.mark.asyncio
async def test_poll_all_continues_past_unexpected_errors(lifecycle, runner, games_registry):
    games_registry.create("hades", "Hades")
    game = games_registry.load("hades")
    PlatformConfigStore().add_platform(game, PLATFORM)
    games_registry.save(game)

    await lifecycle.start(GAME, PLATFORM, "/downloads/setup.exe", "/games/celeste")
    await lifecycle.start("hades", PLATFORM, "/downloads/hades.exe", "/games/hades")
    runner.statuses["container-2"] = RunnerStatus.succeeded(["Hades.exe"])

    real_poll = lifecycle.poll

    async def flaky_poll(game_id, platform_id):
        if game_id == GAME:
            raise OSError("registry unreadable")
        return await real_poll(game_id, platform_id)

    lifecycle.poll = flaky_poll
    changed = await lifecycle.poll_all()

    assert [(g, p, r.status) for g, p, r in changed] == [("hades", PLATFORM, InstallStatus.INSTALLED)]


def test_runner_env_from_settings():
    env = runner_env({'wine': {
        'arch': 'win64',
        'dll_overrides': {'d3d9': 'n,b', 'dinput8': 'native'},
        'winetricks': ['vcrun2019', 'xact'],
    }})
    assert env == {
        'WINEARCH': 'win64',
        'WINEDLLOVERRIDES': 'd3d9=n,b;dinput8=native',
        'DILLINGER_WINETRICKS': 'vcrun2019 xact',
    }
    assert runner_env({}) == {}
