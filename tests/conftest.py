"""Shared fixtures: a scripted stand-in for ProcessRunner and a fake checkout."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from veloren_bot.process_manager.runner import (
    CommandSpec,
    ProcessError,
    ProcessFailed,
    ProcessRunner,
)

Argv = tuple[str, ...]


def _match(argv: Argv, table: dict[Argv, object]) -> object | None:
    for prefix, value in table.items():
        if argv[: len(prefix)] == prefix:
            return value
    return None


class FakeRunner(ProcessRunner):
    """Records commands instead of spawning them.

    Outcomes are keyed by argv prefix, e.g. ``("cargo", "build")``.
    """

    def __init__(self) -> None:
        super().__init__()
        self.specs: list[CommandSpec] = []
        self.cancelled: list[Argv] = []
        self.failures: dict[Argv, ProcessError] = {}
        self.outputs: dict[Argv, str] = {("git", "rev-parse"): "abc1234"}
        self.missing: set[Argv] = set()
        self.on_call: Callable[[Argv], None] | None = None
        # When set, a cancelled blocking command waits for it before exiting
        self.teardown: asyncio.Event | None = None
        self._blocks: dict[Argv, asyncio.Event] = {}

    @property
    def calls(self) -> list[Argv]:
        return [tuple(spec.argv()) for spec in self.specs]

    def fail(self, *prefix: str, returncode: int = 1) -> None:
        self.failures[prefix] = ProcessFailed(prefix[0], returncode)

    def block(self, *prefix: str) -> asyncio.Event:
        """Make matching commands hang until cancelled.

        Returns an event that is set once such a command has started.
        """
        entered = asyncio.Event()
        self._blocks[prefix] = entered
        return entered

    def count(self, *prefix: str) -> int:
        return sum(1 for argv in self.calls if argv[: len(prefix)] == prefix)

    async def _record(self, spec: CommandSpec) -> Argv:
        argv = tuple(spec.argv())
        self.specs.append(spec)
        if self.on_call is not None:
            self.on_call(argv)
        entered = _match(argv, self._blocks)
        if isinstance(entered, asyncio.Event):
            entered.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(argv)
                if self.teardown is not None:
                    await self.teardown.wait()
                raise
        exc = _match(argv, self.failures)
        if isinstance(exc, ProcessError):
            raise exc
        return argv

    async def execute(self, name: str, spec: CommandSpec) -> None:
        await self._record(spec)

    async def output(self, spec: CommandSpec) -> str:
        argv = await self._record(spec)
        value = _match(argv, self.outputs)
        return value if isinstance(value, str) else ""

    async def succeeds(self, spec: CommandSpec) -> bool:
        argv = await self._record(spec)
        return not any(argv[: len(p)] == p for p in self.missing)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """An already cloned game server tree."""
    tree = tmp_path / "veloren"
    tree.mkdir()
    (tree / "Cargo.toml").write_text("[workspace]\n", encoding="utf-8")
    return tree
