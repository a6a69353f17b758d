from __future__ import annotations

import logging
from pathlib import Path

import pytest

from veloren_bot.config import DEFAULT_MCP_PORT, Config
from veloren_bot.process_manager.supervisor import DEFAULT_BINARY, DEFAULT_REPO

_VARS = (
    "DISCORD_BOT_TOKEN",
    "BOT_OWNER_ID",
    "BOT_STATE",
    "BOT_LOG_LEVEL",
    "GAMESERVER_WORKDIR",
    "GAMESERVER_REPO",
    "GAMESERVER_BINARY",
    "GAMESERVER_ADDRESS",
    "MCP_PORT",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    # setenv first so values loaded from .env files are undone afterwards
    for name in _VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return tmp_path / ".env"


def test_from_env_defaults(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "token")

    config = Config.from_env(clean_env)

    assert config.discord_token == "token"
    assert config.owner_id is None
    assert config.state_path == "state.json"
    assert config.log_level == logging.INFO
    assert config.gameserver_workdir == "veloren"
    assert config.gameserver_repo == DEFAULT_REPO
    assert config.gameserver_binary == DEFAULT_BINARY
    assert config.mcp_port == DEFAULT_MCP_PORT


def test_from_env_reads_dotenv_file(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    clean_env.write_text(
        "DISCORD_BOT_TOKEN=abc\n"
        "BOT_OWNER_ID=1234\n"
        "BOT_LOG_LEVEL=debug\n"
        "GAMESERVER_ADDRESS=play.example.net\n"
        "MCP_PORT=9000\n",
        encoding="utf-8",
    )

    config = Config.from_env(clean_env)

    assert config.discord_token == "abc"
    assert config.owner_id == 1234
    assert config.log_level == logging.DEBUG
    assert config.gameserver_address == "play.example.net"
    assert config.mcp_port == 9000


def test_missing_token_is_an_error_unless_optional(clean_env: Path) -> None:
    with pytest.raises(KeyError):
        Config.from_env(clean_env)

    assert Config.from_env(clean_env, require_token=False).discord_token == ""


def test_unknown_log_level_is_rejected(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_LOG_LEVEL", "chatty")

    with pytest.raises(ValueError):
        Config.from_env(clean_env, require_token=False)


def test_resolve_workdir_is_absolute(clean_env: Path, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    config = Config(discord_token="", gameserver_workdir="veloren")

    assert config.resolve_workdir() == (tmp_path / "veloren").resolve()
