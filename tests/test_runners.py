"""
Tests for the docker and local process installer runners.
"""
import asyncio
import os
import struct
from unittest.mock import AsyncMock, MagicMock

import pytest

from dillinger.docker import DockerClient, demux_docker_stream, socket_path_from_url
from dillinger.errors import ExternalRunnerError
from dillinger.runners import DockerInstallerRunner, ProcessInstallerRunner, RunnerState


def _frame(stream, text):
    data = text.encode()
    return struct.pack('>BxxxI', stream, len(data)) + data


def test_demux_docker_stream():
    payload = _frame(1, "installing...\n") + _frame(2, "err:ole:fixme\n")
    assert demux_docker_stream(payload) == "installing...\nerr:ole:fixme\n"
    assert demux_docker_stream(b"plain tty output") == "plain tty output"


def test_socket_path_from_url():
    assert socket_path_from_url("unix:///run/user/1000/podman/podman.sock") == "/run/user/1000/podman/podman.sock"
    assert socket_path_from_url("/var/run/docker.sock") == "/var/run/docker.sock"


@pytest.mark.asyncio
async def test_docker_timeout_becomes_runner_error():
    client = DockerClient("unix:///tmp/hung.sock", timeout=0.3)
    session = MagicMock(closed=False)
    session.request.return_value.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
    session.request.return_value.__aexit__ = AsyncMock(return_value=False)
    client.session = session

    with pytest.raises(ExternalRunnerError) as excinfo:
        await client.inspect_container("abc123")
    assert "did not answer" in excinfo.value.message


@pytest.mark.asyncio
async def test_ping_reports_hung_daemon():
    client = DockerClient(timeout=0.3)
    session = MagicMock(closed=False)
    session.request.return_value.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
    session.request.return_value.__aexit__ = AsyncMock(return_value=False)
    client.session = session

    assert await client.ping() is False


@pytest.mark.asyncio
async def test_inspect_missing_volume_returns_none():
    client = DockerClient()
    response = MagicMock(status=404)
    session = MagicMock(closed=False)
    session.request.return_value.__aenter__ = AsyncMock(return_value=response)
    session.request.return_value.__aexit__ = AsyncMock(return_value=False)
    client.session = session

    assert await client.inspect_volume("dillinger_saves") is None
    assert session.request.call_args.args == ('GET', "http://docker/volumes/dillinger_saves")


@pytest.fixture
def docker():
    client = AsyncMock()
    client.create_container.return_value = "abc123def456789"
    return client


@pytest.fixture
def installer(tmp_path):
    path = tmp_path / "downloads" / "setup_game.exe"
    path.parent.mkdir()
    path.write_bytes(b"MZ")
    return str(path)


@pytest.mark.asyncio
async def test_docker_launch_mounts_and_env(docker, installer, tmp_path):
    runner = DockerInstallerRunner(docker, image="dillinger-wine:latest")
    install_path = str(tmp_path / "games" / "game")

    handle = await runner.launch(installer, install_path, "/VERYSILENT /DIR=\"C:\\Game\"", {'WINEARCH': 'win64'})

    assert handle == "abc123def456789"
    assert os.path.isdir(install_path)
    kwargs = docker.create_container.call_args.kwargs
    assert kwargs['image'] == "dillinger-wine:latest"
    assert kwargs['binds'] == [
        f"{os.path.dirname(installer)}:/installer:ro",
        f"{install_path}:/install:rw",
    ]
    assert kwargs['env']['WINEARCH'] == 'win64'
    assert kwargs['env']['WINEPREFIX'] == '/install'
    assert kwargs['cmd'][:2] == ['sh', '-c']
    assert kwargs['cmd'][3:] == ['/installer/setup_game.exe', '/VERYSILENT', '/DIR=C:\\Game']
    docker.start_container.assert_awaited_once_with("abc123def456789")


@pytest.mark.asyncio
async def test_docker_launch_removes_container_when_start_fails(docker, installer, tmp_path):
    docker.start_container.side_effect = ExternalRunnerError("no such image")
    runner = DockerInstallerRunner(docker)

    with pytest.raises(ExternalRunnerError):
        await runner.launch(installer, str(tmp_path / "game"), None, {})

    docker.remove_container.assert_awaited_once_with("abc123def456789")


@pytest.mark.asyncio
async def test_docker_launch_missing_installer(docker, tmp_path):
    runner = DockerInstallerRunner(docker)
    with pytest.raises(ExternalRunnerError):
        await runner.launch(str(tmp_path / "missing.exe"), str(tmp_path / "game"), None, {})
    docker.create_container.assert_not_awaited()


@pytest.mark.asyncio
async def test_docker_status_mapping(docker, tmp_path):
    install_path = tmp_path / "game"
    install_path.mkdir()
    (install_path / "game.exe").write_bytes(b"MZ")
    runner = DockerInstallerRunner(docker)
    labels = {'Config': {'Labels': {'dillinger.install_path': str(install_path)}}}

    docker.inspect_container.return_value = {'State': {'Status': 'running'}, **labels}
    assert (await runner.status("c1")).state == RunnerState.RUNNING

    docker.inspect_container.return_value = {'State': {'Status': 'exited', 'ExitCode': 0}, **labels}
    status = await runner.status("c1")
    assert status.state == RunnerState.SUCCEEDED
    assert status.executables == [str(install_path / "game.exe")]

    docker.container_logs.return_value = "wine: cannot find installer\n"
    docker.inspect_container.return_value = {'State': {'Status': 'exited', 'ExitCode': 3}, **labels}
    status = await runner.status("c1")
    assert status.state == RunnerState.FAILED
    assert "code 3" in status.error
    assert "cannot find installer" in status.error


@pytest.mark.asyncio
async def test_docker_exit_zero_without_executables_fails(docker, tmp_path):
    runner = DockerInstallerRunner(docker)
    docker.inspect_container.return_value = {
        'State': {'Status': 'exited', 'ExitCode': 0},
        'Config': {'Labels': {'dillinger.install_path': str(tmp_path)}},
    }
    status = await runner.status("c1")
    assert status.state == RunnerState.FAILED


@pytest.mark.asyncio
async def test_docker_terminate_and_release(docker):
    runner = DockerInstallerRunner(docker)
    await runner.terminate("c1")
    docker.kill_container.assert_awaited_once_with("c1")
    docker.remove_container.assert_awaited_once_with("c1")

    await runner.release("c2")
    docker.remove_container.assert_awaited_with("c2")


async def _wait_for_result(runner, handle, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        status = await runner.status(handle)
        if status.state != RunnerState.RUNNING:
            return status
        await asyncio.sleep(0.05)
    raise AssertionError("installer did not finish")


@pytest.mark.asyncio
async def test_process_runner_shell_installer(tmp_path):
    script = tmp_path / "install.sh"
    script.write_text("echo installing\necho '#!/bin/sh' > start.sh\n")
    install_path = tmp_path / "game"

    runner = ProcessInstallerRunner()
    handle = await runner.launch(str(script), str(install_path), None, {})
    status = await _wait_for_result(runner, handle)

    assert status.state == RunnerState.SUCCEEDED
    assert status.executables == [str(install_path / "start.sh")]

    await runner.release(handle)
    with pytest.raises(ExternalRunnerError):
        await runner.status(handle)


@pytest.mark.asyncio
async def test_process_runner_nonzero_exit(tmp_path):
    script = tmp_path / "install.sh"
    script.write_text("echo 'disk full'\nexit 4\n")

    runner = ProcessInstallerRunner()
    handle = await runner.launch(str(script), str(tmp_path / "game"), None, {})
    status = await _wait_for_result(runner, handle)

    assert status.state == RunnerState.FAILED
    assert "code 4" in status.error
    assert "disk full" in status.error


@pytest.mark.asyncio
async def test_process_runner_terminate(tmp_path):
    script = tmp_path / "install.sh"
    script.write_text("exec sleep 30\n")

    runner = ProcessInstallerRunner()
    handle = await runner.launch(str(script), str(tmp_path / "game"), None, {})
    await asyncio.sleep(0.2)
    await runner.terminate(handle)

    with pytest.raises(ExternalRunnerError):
        await runner.status(handle)


@pytest.mark.asyncio
async def test_process_runner_missing_installer(tmp_path):
    runner = ProcessInstallerRunner()
    with pytest.raises(ExternalRunnerError):
        await runner.launch(str(tmp_path / "nope.sh"), str(tmp_path / "game"), None, {})
