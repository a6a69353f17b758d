"""Process runner — executes one external command and forwards its output.

stdout and stderr are read concurrently and merged into a single ordered
line sequence, which is forwarded to a logger while the process is still
running.  Each child gets its own process group; if the awaiting task is
cancelled the whole group is killed, so nothing outlives its caller.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

# StreamReader limit per line.  Linker invocations easily exceed the 64 KiB
# asyncio default.
LINE_LIMIT = 1024 * 1024


class ProcessError(RuntimeError):
    """Base class for process runner errors."""


class SpawnFailed(ProcessError):
    """The executable is missing or could not be started."""

    def __init__(self, program: str, cause: OSError) -> None:
        super().__init__(f"Failed to spawn '{program}': {cause}")
        self.program = program
        self.cause = cause


class ProcessFailed(ProcessError):
    """The process ran but exited with a non-zero status."""

    def __init__(self, program: str, returncode: int) -> None:
        super().__init__(f"'{program}' exited with status {returncode}")
        self.program = program
        self.returncode = returncode


class StreamFailed(ProcessError):
    """Reading the process output failed."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to read output of '{name}': {cause}")
        self.name = name
        self.cause = cause


@dataclass
class CommandSpec:
    """Fully configured external command."""

    program: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    env_remove: list[str] = field(default_factory=list)

    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def build_env(self) -> dict[str, str]:
        spawn_env = os.environ.copy()
        for key in self.env_remove:
            spawn_env.pop(key, None)
        spawn_env.update(self.env)
        return spawn_env

    def __str__(self) -> str:
        return " ".join(self.argv())


class ProcessRunner:
    """Spawns external commands on the running event loop."""

    def __init__(self, sink: logging.Logger | None = None) -> None:
        # Receives every output line as "[name] line"
        self.sink = sink or log

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, name: str, spec: CommandSpec) -> None:
        """Run ``spec`` to completion, logging its output tagged with ``name``.

        Raises SpawnFailed, StreamFailed or ProcessFailed.
        """
        log.debug("Executing: %s (cwd=%s)", spec, spec.cwd)
        process = await self._spawn(
            spec, asyncio.subprocess.PIPE, asyncio.subprocess.PIPE,
        )
        try:
            await self._drain(name, process)
            code = await process.wait()
        except BaseException:
            await _kill(process)
            raise

        if code != 0:
            raise ProcessFailed(spec.program, code)

    async def output(self, spec: CommandSpec) -> str:
        """Run ``spec`` and return its trimmed stdout."""
        process = await self._spawn(
            spec, asyncio.subprocess.PIPE, asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except BaseException:
            await _kill(process)
            raise

        if process.returncode != 0:
            log.debug(
                "%s stderr: %s", spec, stderr.decode("utf-8", errors="replace").strip(),
            )
            raise ProcessFailed(spec.program, process.returncode)
        return stdout.decode("utf-8", errors="replace").strip()

    async def succeeds(self, spec: CommandSpec) -> bool:
        """Run ``spec`` with its output discarded; True if it exited 0."""
        process = await self._spawn(
            spec, asyncio.subprocess.DEVNULL, asyncio.subprocess.DEVNULL,
        )
        try:
            code = await process.wait()
        except BaseException:
            await _kill(process)
            raise
        return code == 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _spawn(
        spec: CommandSpec,
        stdout: int,
        stderr: int,
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *spec.argv(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                cwd=spec.cwd,
                env=spec.build_env(),
                limit=LINE_LIMIT,
                # Create new process group so we can kill the whole tree
                preexec_fn=os.setsid,
            )
        except OSError as exc:
            raise SpawnFailed(spec.program, exc) from exc

    async def _drain(self, name: str, process: asyncio.subprocess.Process) -> None:
        """Forward merged stdout/stderr lines until both streams hit EOF."""
        queue: asyncio.Queue[str | Exception | None] = asyncio.Queue()
        readers = [
            asyncio.create_task(
                _pump(process.stdout, queue),  # type: ignore[arg-type]
                name=f"{name}-stdout",
            ),
            asyncio.create_task(
                _pump(process.stderr, queue),  # type: ignore[arg-type]
                name=f"{name}-stderr",
            ),
        ]
        try:
            open_streams = len(readers)
            while open_streams:
                item = await queue.get()
                if item is None:
                    open_streams -= 1
                elif isinstance(item, Exception):
                    raise StreamFailed(name, item) from item
                else:
                    self.sink.info("[%s] %s", name, item)
        finally:
            for task in readers:
                task.cancel()
            await asyncio.gather(*readers, return_exceptions=True)


async def _pump(
    stream: asyncio.StreamReader,
    queue: asyncio.Queue[str | Exception | None],
) -> None:
    """Push decoded lines from one stream into the shared queue; None on EOF."""
    try:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            queue.put_nowait(raw.decode("utf-8", errors="replace").strip())
    except (OSError, ValueError) as exc:
        # ValueError: a single line exceeded LINE_LIMIT
        queue.put_nowait(exc)
        return
    queue.put_nowait(None)


async def _kill(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group of ``process`` and reap the leader."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
        log.info("Killed process group %d", process.pid)
    except ProcessLookupError:
        pass
    await process.wait()
