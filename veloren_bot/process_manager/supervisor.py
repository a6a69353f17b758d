"""Game server supervisor — update, compile and run pipeline.

One pipeline run at a time is executed as a CancellableTask.  The run
reports its progress as StatusEvents on a queue; ``status()`` drains the
queue without blocking, so callers can poll at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from veloren_bot.models import Revision, ServerStatus, StatusEvent, StatusEventType
from veloren_bot.process_manager.runner import CommandSpec, ProcessError, ProcessRunner
from veloren_bot.process_manager.task import CancellableTask

log = logging.getLogger(__name__)

DEFAULT_REPO = "https://gitlab.com/veloren/veloren.git"
DEFAULT_BINARY = "veloren-server-cli"

# Leaks in from rustup when the bot itself is started through cargo
_CARGO_ENV_REMOVE = ["RUSTUP_TOOLCHAIN"]

_TOOLCHAIN_PROBES = {
    "git_version": ["git", "--version"],
    "git_lfs": ["git", "lfs", "--version"],
    "rustup_version": ["rustup", "--version"],
    "cargo_version": ["cargo", "--version"],
}


class GameServerSupervisor:
    """Owns at most one pipeline run for a single game server checkout.

    Not safe for concurrent use: callers serialize calls (see
    ServerController).  ``status()`` and ``version()`` never block.
    """

    def __init__(
        self,
        workdir: str | Path,
        *,
        repo_url: str = DEFAULT_REPO,
        binary: str = DEFAULT_BINARY,
        runner: ProcessRunner | None = None,
    ) -> None:
        self.workdir = Path(workdir)
        self.repo_url = repo_url
        self.binary = binary
        self.runner = runner or ProcessRunner()

        self._task: CancellableTask | None = None
        self._events: asyncio.Queue[StatusEvent] | None = None
        self._status = ServerStatus.OFFLINE
        self._version: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.is_finished()

    async def start(
        self,
        revision: Revision,
        gameserver_args: Iterable[str] = (),
        build_args: Iterable[str] = (),
        envs: Mapping[str, str] | None = None,
    ) -> bool:
        """Begin a pipeline run. Returns False if one is already active."""
        if self._task is not None:
            if not self._task.is_finished():
                log.info("Server pipeline already running, not starting another")
                return False
            # Previous run ended on its own; keep its final status
            await self._reap()

        events: asyncio.Queue[StatusEvent] = asyncio.Queue()
        self._events = events
        self._task = CancellableTask(
            self._pipeline(
                events,
                revision,
                list(gameserver_args),
                list(build_args),
                dict(envs or {}),
            ),
            name=f"pipeline-{revision}",
        )
        log.info("Started server pipeline for %s '%s'", revision.kind.value, revision)
        return True

    async def stop(self) -> bool:
        """Cancel the active run. Returns False if nothing was running."""
        task = self._task
        if task is None:
            return False
        if task.is_finished():
            # Ended on its own; its final status stands
            await self._reap()
            return False

        self._task = None
        try:
            await task.cancel()
        finally:
            # Keep a version the run already reported, discard everything else
            self._drain(statuses=False)
            self._events = None
            self._status = ServerStatus.OFFLINE
        log.info("Stopped server pipeline")
        return True

    async def restart(
        self,
        revision: Revision,
        gameserver_args: Iterable[str] = (),
        build_args: Iterable[str] = (),
        envs: Mapping[str, str] | None = None,
    ) -> bool:
        await self.stop()
        return await self.start(revision, gameserver_args, build_args, envs)

    async def clean(
        self,
        revision: Revision,
        gameserver_args: Iterable[str] = (),
        build_args: Iterable[str] = (),
        envs: Mapping[str, str] | None = None,
    ) -> bool:
        """Stop, wipe the build cache, then start again.

        The clean step runs in the caller, not as a background task; it must
        be complete before anything is rebuilt.
        """
        await self.stop()

        log.info("Cleaning...")
        try:
            await self.runner.execute("cargo", self._cargo(["clean"]))
        except ProcessError as exc:
            log.error("Failed to clean: %s", exc)
            return False

        await self.start(revision, gameserver_args, build_args, envs)
        return True

    def status(self) -> ServerStatus:
        """Latest known status, after applying all pending events."""
        self._drain()
        return self._status

    def version(self) -> str | None:
        """Short hash of the last checked out commit, if any."""
        self._drain()
        return self._version

    async def wait(self) -> ServerStatus:
        """Wait for the current run to end on its own and return its status."""
        if self._task is not None:
            await self._task.join()
            await self._reap()
        return self.status()

    async def ensure_checkout(self) -> None:
        """Clone the repository if the working tree does not exist yet.

        Raises ProcessError if the clone fails, OSError if the parent
        directory cannot be created.
        """
        if (self.workdir / "Cargo.toml").exists():
            return

        log.info("Cloning repository %s into %s...", self.repo_url, self.workdir)
        self.workdir.parent.mkdir(parents=True, exist_ok=True)
        await self.runner.execute(
            "git",
            CommandSpec(
                "git",
                ["clone", self.repo_url, str(self.workdir)],
                cwd=str(self.workdir.parent),
            ),
        )

    async def toolchain_versions(self) -> dict[str, str]:
        """Versions of the external tools the pipeline relies on."""
        versions: dict[str, str] = {}
        for key, argv in _TOOLCHAIN_PROBES.items():
            try:
                versions[key] = await self.runner.output(CommandSpec(argv[0], argv[1:]))
            except ProcessError as exc:
                log.warning("Could not query %s: %s", " ".join(argv), exc)
                versions[key] = "unavailable"
        return versions

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _drain(self, statuses: bool = True) -> None:
        if self._events is None:
            return
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                break
            if event.type == StatusEventType.VERSION:
                self._version = event.version
            elif statuses and event.status is not None:
                self._status = event.status

    async def _reap(self) -> None:
        """Collect the events and handle of a run that finished by itself."""
        task = self._task
        self._drain()
        self._task = None
        self._events = None
        if task is not None:
            await task.join()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _pipeline(
        self,
        events: asyncio.Queue[StatusEvent],
        revision: Revision,
        gameserver_args: list[str],
        build_args: list[str],
        envs: dict[str, str],
    ) -> None:
        def report(status: ServerStatus) -> None:
            events.put_nowait(StatusEvent.of(status))

        # Update repository
        report(ServerStatus.UPDATING)
        if not await self._update(revision):
            report(ServerStatus.UPDATE_FAILED)
            return

        # Query new version
        version = await self._discover_version()
        if version is None:
            report(ServerStatus.UPDATE_FAILED)
            return
        events.put_nowait(StatusEvent.discovered(version))

        # Compile server
        report(ServerStatus.COMPILING)
        if not await self._compile(build_args):
            report(ServerStatus.COMPILE_FAILED)
            return

        # Start server
        report(ServerStatus.ONLINE)
        if not await self._run_server(gameserver_args, build_args, envs):
            report(ServerStatus.RUN_FAILED)
            return
        report(ServerStatus.OFFLINE)

    async def _update(self, revision: Revision) -> bool:
        log.info("Updating repository to %s '%s'...", revision.kind.value, revision)
        try:
            await self.ensure_checkout()
            await self._git("fetch", "--all")

            if revision.is_branch and await self._remote_branch_exists(revision.name):
                await self._git("checkout", revision.name, "-f")
                await self._git("reset", "--hard", f"origin/{revision.name}")
                return True

            if revision.is_branch:
                log.info("'%s' is not a remote branch, trying it as a commit", revision)
            await self._git("fetch", "origin")
            await self._git("cat-file", "-e", f"{revision.name}^{{commit}}")
            await self._git("checkout", revision.name, "-f")
            await self._git("reset", "--hard", revision.name)
        except (ProcessError, OSError) as exc:
            log.error("Failed to update to '%s': %s", revision, exc)
            return False
        return True

    async def _remote_branch_exists(self, branch: str) -> bool:
        return await self.runner.succeeds(CommandSpec(
            "git",
            ["ls-remote", "--exit-code", "--heads", "origin", branch],
            cwd=str(self.workdir),
        ))

    async def _discover_version(self) -> str | None:
        log.info("Querying Git commit...")
        try:
            version = await self.runner.output(CommandSpec(
                "git", ["rev-parse", "--short", "HEAD"], cwd=str(self.workdir),
            ))
        except ProcessError as exc:
            log.error("Failed to get commit hash: %s", exc)
            return None
        if not version:
            log.error("Failed to get commit hash: empty output")
            return None
        return version

    async def _compile(self, build_args: list[str]) -> bool:
        cmd = self._cargo(["build", "--bin", self.binary, *build_args])
        log.info("Compiling... [%s]", cmd)
        try:
            await self.runner.execute("cargo", cmd)
        except ProcessError as exc:
            log.error("Failed to compile: %s", exc)
            return False
        return True

    async def _run_server(
        self,
        gameserver_args: list[str],
        build_args: list[str],
        envs: dict[str, str],
    ) -> bool:
        cmd = self._cargo(
            ["run", "--bin", self.binary, *build_args, "--", *gameserver_args],
            envs,
        )
        log.info("Starting game server... [%s]", cmd)
        try:
            await self.runner.execute("veloren", cmd)
        except ProcessError as exc:
            log.error("Failed to start server: %s", exc)
            return False
        log.info("Game server exited normally")
        return True

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    async def _git(self, *args: str) -> None:
        await self.runner.execute("git", CommandSpec("git", list(args), cwd=str(self.workdir)))

    def _cargo(self, args: list[str], envs: dict[str, str] | None = None) -> CommandSpec:
        return CommandSpec(
            "cargo",
            args,
            cwd=str(self.workdir),
            env=dict(envs or {}),
            env_remove=list(_CARGO_ENV_REMOVE),
        )
