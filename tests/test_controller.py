from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from veloren_bot.controller import ServerController
from veloren_bot.models import ServerFile, ServerStatus
from veloren_bot.process_manager.supervisor import GameServerSupervisor
from veloren_bot.state import StateStore


def _controller(tmp_path: Path, workdir: Path, runner) -> ServerController:
    supervisor = GameServerSupervisor(workdir, repo_url="url", runner=runner)
    return ServerController(supervisor, StateStore.load(tmp_path / "state.json"))


def test_file_paths_follow_build_profile(tmp_path: Path, workdir: Path, fake_runner) -> None:
    controller = _controller(tmp_path, workdir, fake_runner)

    debug = controller.file_path(ServerFile.SETTINGS)
    controller.state.add_build_arg("--release")
    release = controller.file_path(ServerFile.CLI_SETTINGS)

    assert debug == workdir / "target/debug/userdata/server/server_config/settings.ron"
    assert release == workdir / "target/release/userdata/server-cli/settings.ron"


def test_replace_file_restarts_running_server(tmp_path: Path, workdir: Path, fake_runner) -> None:
    controller = _controller(tmp_path, workdir, fake_runner)

    async def scenario() -> None:
        online = fake_runner.block("cargo", "run")
        await controller.start()
        await online.wait()
        online.clear()
        await controller.replace_file(ServerFile.WHITELIST, b"[]\n")
        await online.wait()
        await controller.stop()

    asyncio.run(scenario())

    path = controller.file_path(ServerFile.WHITELIST)
    assert path.read_bytes() == b"[]\n"
    assert controller.read_file(ServerFile.WHITELIST) == b"[]\n"
    assert fake_runner.cancelled[0][:2] == ("cargo", "run")
    assert fake_runner.count("git", "fetch", "--all") == 2


def test_remove_file_deletes_and_starts(tmp_path: Path, workdir: Path, fake_runner) -> None:
    controller = _controller(tmp_path, workdir, fake_runner)
    path = controller.file_path(ServerFile.DB)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"SQLite format 3\x00")

    async def scenario() -> ServerStatus:
        await controller.remove_file(ServerFile.DB)
        return await controller.supervisor.wait()

    assert asyncio.run(scenario()) == ServerStatus.OFFLINE
    assert not path.exists()
    assert fake_runner.count("cargo", "run") == 1


def test_failed_removal_leaves_server_stopped(tmp_path: Path, workdir: Path, fake_runner) -> None:
    controller = _controller(tmp_path, workdir, fake_runner)

    async def scenario() -> None:
        online = fake_runner.block("cargo", "run")
        await controller.start()
        await online.wait()
        with pytest.raises(FileNotFoundError):
            await controller.remove_file(ServerFile.BANLIST)

    asyncio.run(scenario())

    assert not controller.supervisor.is_running
    assert controller.status() == ServerStatus.OFFLINE
    assert fake_runner.count("git", "fetch", "--all") == 1


def test_read_missing_file_raises(tmp_path: Path, workdir: Path, fake_runner) -> None:
    controller = _controller(tmp_path, workdir, fake_runner)

    with pytest.raises(FileNotFoundError):
        controller.read_file(ServerFile.DESCRIPTION)
