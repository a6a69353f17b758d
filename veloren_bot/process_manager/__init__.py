"""Game server process management — the pipeline core.

  - ProcessRunner:        spawn one command, forward its merged output
  - CancellableTask:      background work with cancel-and-join
  - GameServerSupervisor: update → version → compile → run state machine

Can run headless, exposing the supervisor as MCP tools:
    python -m veloren_bot.process_manager
"""

from veloren_bot.process_manager.runner import (
    CommandSpec,
    ProcessError,
    ProcessFailed,
    ProcessRunner,
    SpawnFailed,
    StreamFailed,
)
from veloren_bot.process_manager.supervisor import GameServerSupervisor
from veloren_bot.process_manager.task import CancellableTask

__all__ = [
    "CancellableTask",
    "CommandSpec",
    "GameServerSupervisor",
    "ProcessError",
    "ProcessFailed",
    "ProcessRunner",
    "SpawnFailed",
    "StreamFailed",
]
