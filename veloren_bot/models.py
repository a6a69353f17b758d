from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


# ---------------------------------------------------------------------------
# Revision — what the pipeline checks out
# ---------------------------------------------------------------------------

class RevisionKind(enum.Enum):
    BRANCH = "branch"
    COMMIT = "commit"


@dataclass(frozen=True)
class Revision:
    kind: RevisionKind
    name: str

    @classmethod
    def branch(cls, name: str) -> Revision:
        return cls(RevisionKind.BRANCH, name)

    @classmethod
    def commit(cls, sha: str) -> Revision:
        return cls(RevisionKind.COMMIT, sha)

    @property
    def is_branch(self) -> bool:
        return self.kind == RevisionKind.BRANCH

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Revision:
        return cls(RevisionKind(data.get("kind", "branch")), data["name"])

    def __str__(self) -> str:
        return self.name


# ---------------------------------------------------------------------------
# ServerStatus — the observable lifecycle of the game server
# ---------------------------------------------------------------------------

class ServerStatus(str, enum.Enum):
    OFFLINE = "offline"
    UPDATING = "updating"
    COMPILING = "compiling"
    ONLINE = "online"

    UPDATE_FAILED = "update_failed"
    COMPILE_FAILED = "compile_failed"
    RUN_FAILED = "run_failed"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def failed(self) -> bool:
        return self in (
            ServerStatus.UPDATE_FAILED,
            ServerStatus.COMPILE_FAILED,
            ServerStatus.RUN_FAILED,
        )


_LABELS = {
    ServerStatus.OFFLINE: "Offline",
    ServerStatus.UPDATING: "Updating...",
    ServerStatus.COMPILING: "Compiling...",
    ServerStatus.ONLINE: "Online",
    ServerStatus.UPDATE_FAILED: "Failed to update",
    ServerStatus.COMPILE_FAILED: "Compile Failed",
    ServerStatus.RUN_FAILED: "Starting Failed",
}


# ---------------------------------------------------------------------------
# StatusEvent — envelope pushed from the pipeline to the supervisor
# ---------------------------------------------------------------------------

class StatusEventType(enum.Enum):
    STATUS = "status"    # primary lifecycle transition
    VERSION = "version"  # resolved short commit hash, side channel


@dataclass(frozen=True)
class StatusEvent:
    type: StatusEventType
    status: ServerStatus | None = None
    version: str | None = None

    @classmethod
    def of(cls, status: ServerStatus) -> StatusEvent:
        return cls(StatusEventType.STATUS, status=status)

    @classmethod
    def discovered(cls, version: str) -> StatusEvent:
        return cls(StatusEventType.VERSION, version=version)


# ---------------------------------------------------------------------------
# ServerFile — userdata files admins may replace through the bot
# ---------------------------------------------------------------------------

class ServerFile(str, enum.Enum):
    DB = "db"
    ADMINS = "admins"
    BANLIST = "banlist"
    DESCRIPTION = "description"
    SETTINGS = "settings"
    WHITELIST = "whitelist"
    CLI_SETTINGS = "cli_settings"

    @property
    def relpath(self) -> str:
        """Location below the server's ``userdata`` directory."""
        return _FILE_PATHS[self]

    @property
    def is_text(self) -> bool:
        return self.relpath.endswith(".ron")


_FILE_PATHS = {
    ServerFile.DB: "server/saves/db.sqlite",
    ServerFile.ADMINS: "server/server_config/admins.ron",
    ServerFile.BANLIST: "server/server_config/banlist.ron",
    ServerFile.DESCRIPTION: "server/server_config/description.ron",
    ServerFile.SETTINGS: "server/server_config/settings.ron",
    ServerFile.WHITELIST: "server/server_config/whitelist.ron",
    ServerFile.CLI_SETTINGS: "server-cli/settings.ron",
}
