from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from .models import Revision, ServerFile, ServerStatus
from .process_manager.supervisor import GameServerSupervisor
from .state import StateStore

log = logging.getLogger(__name__)


class ServerController:
    """Single entry point the front ends use to drive the game server.

    Serializes supervisor operations with one lock, held only for the
    duration of a single call (pipeline stages run in the background and
    are never awaited under it).  ``status()`` and ``version()`` skip the
    lock entirely so they stay responsive during ``stop`` or ``clean``.
    """

    def __init__(self, supervisor: GameServerSupervisor, state: StateStore) -> None:
        self.supervisor = supervisor
        self.state = state
        self._lock = asyncio.Lock()

    def _settings(self) -> tuple[Revision, list[str], list[str], dict[str, str]]:
        s = self.state
        return s.revision, list(s.gameserver_args), list(s.build_args), dict(s.envs)

    async def start(self) -> bool:
        async with self._lock:
            return await self.supervisor.start(*self._settings())

    async def stop(self) -> bool:
        async with self._lock:
            return await self.supervisor.stop()

    async def restart(self) -> bool:
        async with self._lock:
            return await self.supervisor.restart(*self._settings())

    async def clean(self) -> bool:
        async with self._lock:
            return await self.supervisor.clean(*self._settings())

    async def change_revision(self, name: str) -> Revision | None:
        """Switch to a branch or commit and restart. None if it doesn't exist."""
        async with self._lock:
            revision = await self.state.set_revision(
                name, self.supervisor.runner, self.supervisor.repo_url,
            )
            if revision is None:
                return None
            log.info("Switched to %s '%s'", revision.kind.value, revision)
            await self.supervisor.restart(*self._settings())
            return revision

    # ------------------------------------------------------------------
    # Userdata files
    # ------------------------------------------------------------------

    def file_path(self, file: ServerFile) -> Path:
        """Where the server built with the current cargo arguments keeps ``file``."""
        profile = "release" if "--release" in self.state.build_args else "debug"
        return self.supervisor.workdir / "target" / profile / "userdata" / file.relpath

    def read_file(self, file: ServerFile) -> bytes:
        return self.file_path(file).read_bytes()

    async def replace_file(self, file: ServerFile, content: bytes) -> None:
        """Stop the server, overwrite ``file`` and start the server again.

        Raises OSError if the file cannot be written; the server then stays
        stopped.
        """
        async with self._lock:
            await self.supervisor.stop()
            path = self.file_path(file)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            log.info("Replaced %s (%d bytes)", path, len(content))
            await self.supervisor.start(*self._settings())

    async def remove_file(self, file: ServerFile) -> None:
        """Stop the server, delete ``file`` and start the server again.

        Raises OSError (FileNotFoundError if it does not exist); the server
        then stays stopped.
        """
        async with self._lock:
            await self.supervisor.stop()
            path = self.file_path(file)
            path.unlink()
            log.info("Removed %s", path)
            await self.supervisor.start(*self._settings())

    def status(self) -> ServerStatus:
        return self.supervisor.status()

    def version(self) -> str | None:
        return self.supervisor.version()

    def snapshot(self) -> dict[str, Any]:
        status = self.status()
        return {
            "status": status.value,
            "label": status.label,
            "running": self.supervisor.is_running,
            "version": self.version(),
            "revision": self.state.revision.to_dict(),
            "gameserver_args": list(self.state.gameserver_args),
            "build_args": list(self.state.build_args),
            "envs": dict(self.state.envs),
        }

    async def shutdown(self) -> None:
        if await self.stop():
            log.info("Game server stopped for shutdown")
