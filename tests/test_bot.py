from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

from veloren_bot.bot import VelorenBot
from veloren_bot.config import Config
from veloren_bot.controller import ServerController
from veloren_bot.models import ServerFile
from veloren_bot.process_manager.supervisor import GameServerSupervisor
from veloren_bot.state import StateStore

OWNER = 1


class FakeInteraction:
    """Records replies in the order the command sends them."""

    def __init__(self, user_id: int = OWNER) -> None:
        self.user = SimpleNamespace(id=user_id)
        self.sent: list[tuple[str, dict]] = []
        self.response = SimpleNamespace(defer=self._defer, send_message=self._send_message)
        self.followup = SimpleNamespace(send=self._followup)

    async def _defer(self, **kwargs) -> None:
        self.sent.append(("defer", kwargs))

    async def _send_message(self, content=None, **kwargs) -> None:
        self.sent.append(("send", {"content": content, **kwargs}))

    async def _followup(self, content=None, **kwargs) -> None:
        self.sent.append(("followup", {"content": content, **kwargs}))


def _bot(tmp_path: Path, workdir: Path, runner) -> VelorenBot:
    supervisor = GameServerSupervisor(workdir, repo_url="url", runner=runner)
    controller = ServerController(supervisor, StateStore.load(tmp_path / "state.json"))
    return VelorenBot(Config(discord_token="", owner_id=OWNER), controller)


def _command(bot: VelorenBot, *path: str):
    command = bot.tree.get_command(path[0])
    for name in path[1:]:
        command = command.get_command(name)
    return command


def test_start_defers_before_waiting_for_the_lock(tmp_path: Path, workdir: Path, fake_runner) -> None:
    interaction = FakeInteraction()

    async def scenario() -> list[str]:
        bot = _bot(tmp_path, workdir, fake_runner)
        ctl = bot.controller
        await ctl._lock.acquire()
        call = asyncio.create_task(_command(bot, "start").callback(interaction))
        while not interaction.sent:
            await asyncio.sleep(0)
        before = [kind for kind, _ in interaction.sent]
        ctl._lock.release()
        await call
        await ctl.supervisor.wait()
        return before

    before = asyncio.run(scenario())

    assert before == ["defer"]
    assert [kind for kind, _ in interaction.sent] == ["defer", "followup"]
    assert "Started" in interaction.sent[-1][1]["embed"].description


def test_non_admin_is_denied(tmp_path: Path, workdir: Path, fake_runner) -> None:
    interaction = FakeInteraction(user_id=99)

    async def scenario() -> None:
        bot = _bot(tmp_path, workdir, fake_runner)
        await _command(bot, "start").callback(interaction)

    asyncio.run(scenario())

    kind, reply = interaction.sent[0]
    assert kind == "send"
    assert reply["ephemeral"] is True
    assert fake_runner.calls == []


def test_admin_list_shows_admins(tmp_path: Path, workdir: Path, fake_runner) -> None:
    empty = FakeInteraction()
    listed = FakeInteraction()

    async def scenario() -> None:
        bot = _bot(tmp_path, workdir, fake_runner)
        list_admins = _command(bot, "admin", "list")
        await list_admins.callback(empty)
        bot.controller.state.add_admin(42)
        await list_admins.callback(listed)

    asyncio.run(scenario())

    assert "No Admins found" in empty.sent[0][1]["embed"].description
    assert "<@42> (42)" in listed.sent[0][1]["embed"].description


def test_files_view_sends_ron_as_codeblock(tmp_path: Path, workdir: Path, fake_runner) -> None:
    interaction = FakeInteraction()

    async def scenario() -> None:
        bot = _bot(tmp_path, workdir, fake_runner)
        path = bot.controller.file_path(ServerFile.DESCRIPTION)
        path.parent.mkdir(parents=True)
        path.write_text('"Test server"\n', encoding="utf-8")
        await _command(bot, "files", "view").callback(interaction, ServerFile.DESCRIPTION)

    asyncio.run(scenario())

    kind, reply = interaction.sent[0]
    assert kind == "send"
    assert reply["content"] == '```rust\n"Test server"\n\n```'
