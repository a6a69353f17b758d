"""Run the game server pipeline headless, controlled over MCP (HTTP).

Usage:
    python -m veloren_bot.process_manager [--port PORT] [--autostart]
    python -m veloren_bot.process_manager --once

Settings come from the same environment / .env file as the Discord bot;
no Discord token is needed.  ``--once`` runs a single pipeline without the
MCP server and exits non-zero if it ended in a failed status.
"""

import argparse
import asyncio
import logging
import signal
import sys

import uvicorn

from veloren_bot.config import Config
from veloren_bot.controller import ServerController
from veloren_bot.process_manager.server import create_server
from veloren_bot.process_manager.supervisor import GameServerSupervisor
from veloren_bot.state import StateStore

log = logging.getLogger(__name__)


def _controller(config: Config) -> ServerController:
    supervisor = GameServerSupervisor(
        config.resolve_workdir(),
        repo_url=config.gameserver_repo,
        binary=config.gameserver_binary,
    )
    return ServerController(supervisor, StateStore.load(config.state_path))


async def _prepare(controller: ServerController) -> None:
    supervisor = controller.supervisor
    versions = await supervisor.toolchain_versions()
    log.info(
        "Current environment %s",
        ", ".join(f"{k}={v}" for k, v in versions.items()),
    )
    await supervisor.ensure_checkout()


async def _run_once(config: Config) -> int:
    controller = _controller(config)
    await _prepare(controller)
    await controller.start()
    status = await controller.supervisor.wait()
    log.info("Pipeline finished: %s (version %s)", status.label, controller.version())
    return 1 if status.failed else 0


async def _serve(config: Config, port: int, autostart: bool) -> None:
    controller = _controller(config)
    await _prepare(controller)
    server = create_server(controller, port=port)

    if autostart:
        await controller.start()

    app = server.streamable_http_app()
    uvi = uvicorn.Server(uvicorn.Config(
        app, host="127.0.0.1", port=port, log_level="info",
    ))

    # Use _serve() instead of serve() to bypass uvicorn's
    # capture_signals() context manager which overrides signal
    # handlers with signal.signal() — preventing our async
    # handlers from working.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())

    # Block until a signal arrives
    await shutdown.wait()
    log.info("Signal received — shutting down")

    # Tell uvicorn to stop, then kill the pipeline
    uvi.should_exit = True
    await serve_task
    await controller.shutdown()


def main() -> None:
    config = Config.from_env(require_token=False)

    parser = argparse.ArgumentParser(description="Headless Veloren server pipeline")
    parser.add_argument(
        "--port", type=int, default=config.mcp_port,
        help=f"Port to listen on (default: {config.mcp_port})",
    )
    parser.add_argument(
        "--autostart", action="store_true",
        help="Start the pipeline as soon as the daemon is up",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run one pipeline without the MCP server and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [veloren-server] %(levelname)s %(name)s: %(message)s",
    )

    if args.once:
        sys.exit(asyncio.run(_run_once(config)))

    log.info("Starting veloren-server on http://127.0.0.1:%d/mcp", args.port)
    asyncio.run(_serve(config, args.port, args.autostart))


if __name__ == "__main__":
    main()
