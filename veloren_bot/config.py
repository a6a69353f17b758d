from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from veloren_bot.process_manager.supervisor import DEFAULT_BINARY, DEFAULT_REPO

DEFAULT_MCP_PORT = 8901


@dataclass(frozen=True)
class Config:
    discord_token: str
    owner_id: int | None = None
    state_path: str = "state.json"
    log_level: int = logging.INFO
    gameserver_workdir: str = "veloren"
    gameserver_repo: str = DEFAULT_REPO
    gameserver_binary: str = DEFAULT_BINARY
    gameserver_address: str = ""
    mcp_port: int = DEFAULT_MCP_PORT

    def resolve_workdir(self) -> Path:
        """Absolute path of the game server checkout.

        Relative paths are taken from the current directory; the directory
        does not have to exist yet (it is cloned on first start).
        """
        return Path(self.gameserver_workdir).expanduser().resolve()

    @classmethod
    def from_env(
        cls,
        env_path: str | Path | None = None,
        *,
        require_token: bool = True,
    ) -> Config:
        load_dotenv(env_path)

        if require_token:
            token = os.environ["DISCORD_BOT_TOKEN"]
        else:
            token = os.getenv("DISCORD_BOT_TOKEN", "")

        raw_owner = os.getenv("BOT_OWNER_ID", "").strip()
        owner = int(raw_owner) if raw_owner else None

        level_name = os.getenv("BOT_LOG_LEVEL", "INFO").strip().upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown BOT_LOG_LEVEL: {level_name}")

        return cls(
            discord_token=token,
            owner_id=owner,
            state_path=os.getenv("BOT_STATE", "state.json"),
            log_level=level,
            gameserver_workdir=os.getenv("GAMESERVER_WORKDIR", "veloren"),
            gameserver_repo=os.getenv("GAMESERVER_REPO", DEFAULT_REPO),
            gameserver_binary=os.getenv("GAMESERVER_BINARY", DEFAULT_BINARY),
            gameserver_address=os.getenv("GAMESERVER_ADDRESS", ""),
            mcp_port=int(os.getenv("MCP_PORT", str(DEFAULT_MCP_PORT))),
        )
