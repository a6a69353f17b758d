"""MCP server exposing the game server pipeline as tools over HTTP."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from veloren_bot.config import DEFAULT_MCP_PORT
from veloren_bot.controller import ServerController


def create_server(
    controller: ServerController,
    port: int = DEFAULT_MCP_PORT,
) -> FastMCP:
    """Create and configure the MCP game server control surface."""

    mcp = FastMCP(
        name="veloren-server",
        instructions=(
            "Controls the Veloren test server build pipeline (git update, cargo "
            "build, run). Use start_server to launch it, server_status to follow "
            "its progress, and stop_server to shut it down."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )
    register_tools(mcp, controller)
    return mcp


def register_tools(mcp: Any, controller: ServerController) -> None:
    """Attach the pipeline tools to ``mcp`` (anything with a ``tool()`` decorator)."""

    # ------------------------------------------------------------------
    # Tool: start_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def start_server() -> dict:
        """Start the update → compile → run pipeline for the configured revision.

        No-op if a pipeline is already running; ``started`` tells which.
        Progress is reported through server_status.
        """
        started = await controller.start()
        return {"started": started, **controller.snapshot()}

    # ------------------------------------------------------------------
    # Tool: stop_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def stop_server() -> dict:
        """Stop the running pipeline, killing any build or server process.

        The status is reported as offline afterwards, whichever stage was
        interrupted.
        """
        stopped = await controller.stop()
        return {"stopped": stopped, **controller.snapshot()}

    # ------------------------------------------------------------------
    # Tool: restart_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def restart_server() -> dict:
        """Stop the pipeline if running, then start it again."""
        started = await controller.restart()
        return {"started": started, **controller.snapshot()}

    # ------------------------------------------------------------------
    # Tool: clean_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def clean_server() -> dict:
        """Stop the server, run ``cargo clean`` and start again.

        Blocks until the clean finishes. On failure nothing is started.
        """
        cleaned = await controller.clean()
        result: dict[str, Any] = {"cleaned": cleaned, **controller.snapshot()}
        if not cleaned:
            result["error"] = "cargo clean failed, check the logs"
        return result

    # ------------------------------------------------------------------
    # Tool: server_status
    # ------------------------------------------------------------------
    @mcp.tool()
    async def server_status() -> dict:
        """Current pipeline status, discovered commit and build settings.

        Never waits for the pipeline; safe to poll while it runs.
        """
        return controller.snapshot()

    # ------------------------------------------------------------------
    # Tool: set_revision
    # ------------------------------------------------------------------
    @mcp.tool()
    async def set_revision(rev: str) -> dict:
        """Switch to a branch or commit hash and restart the server.

        Args:
            rev: Branch name (checked against the remote) or commit hash.
        """
        revision = await controller.change_revision(rev)
        if revision is None:
            return {"rev": rev, "status": "not_found", "error": f"'{rev}' does not exist"}
        return {"rev": rev, **controller.snapshot()}
