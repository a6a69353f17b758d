"""Persisted bot state — revision, gameserver settings and admins.

Not meant to be edited by hand; every mutation is written straight back to
the JSON file.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import Revision
from .process_manager.runner import CommandSpec, ProcessRunner

log = logging.getLogger(__name__)

DEFAULT_BRANCH = "master"

_COMMIT_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")


def _add_unique(items: list[str], value: str) -> bool:
    if value in items:
        return False
    items.append(value)
    return True


@dataclass
class StateStore:
    path: Path
    revision: Revision = field(default_factory=lambda: Revision.branch(DEFAULT_BRANCH))
    # Ordered and free of duplicates
    gameserver_args: list[str] = field(default_factory=list)
    build_args: list[str] = field(default_factory=list)
    envs: dict[str, str] = field(default_factory=dict)
    admins: set[int] = field(default_factory=set)

    @classmethod
    def load(cls, path: str | Path) -> StateStore:
        """Load the state file, creating it with defaults if it is missing."""
        path = Path(path)
        if not path.exists():
            log.warning("No state file at %s — creating defaults", path)
            store = cls(path=path)
            store.save()
            return store

        with open(path) as f:
            data: dict[str, Any] = json.load(f)

        store = cls(path=path)
        if "revision" in data:
            store.revision = Revision.from_dict(data["revision"])
        for arg in data.get("gameserver_args", []):
            _add_unique(store.gameserver_args, str(arg))
        for arg in data.get("build_args", []):
            _add_unique(store.build_args, str(arg))
        store.envs = {str(k): str(v) for k, v in data.get("envs", {}).items()}
        store.admins = {int(uid) for uid in data.get("admins", [])}
        return store

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision.to_dict(),
            "gameserver_args": list(self.gameserver_args),
            "build_args": list(self.build_args),
            "envs": dict(self.envs),
            "admins": sorted(self.admins),
        }

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        tmp.replace(self.path)

    # ------------------------------------------------------------------
    # Revision
    # ------------------------------------------------------------------

    async def set_revision(
        self,
        name: str,
        runner: ProcessRunner,
        repo_url: str,
    ) -> Revision | None:
        """Resolve ``name`` and store it. Returns None if it does not exist."""
        revision = await resolve_revision(name, runner, repo_url)
        if revision is not None:
            self.revision = revision
            self.save()
        return revision

    # ------------------------------------------------------------------
    # Gameserver / build arguments
    # ------------------------------------------------------------------

    def add_arg(self, arg: str) -> bool:
        added = _add_unique(self.gameserver_args, arg)
        self.save()
        return added

    def remove_arg(self, arg: str) -> bool:
        if arg not in self.gameserver_args:
            return False
        self.gameserver_args.remove(arg)
        self.save()
        return True

    def reset_args(self) -> None:
        self.gameserver_args.clear()
        self.save()

    def add_build_arg(self, arg: str) -> bool:
        added = _add_unique(self.build_args, arg)
        self.save()
        return added

    def remove_build_arg(self, arg: str) -> bool:
        if arg not in self.build_args:
            return False
        self.build_args.remove(arg)
        self.save()
        return True

    def reset_build_args(self) -> None:
        self.build_args.clear()
        self.save()

    # ------------------------------------------------------------------
    # Environment variables
    # ------------------------------------------------------------------

    def set_env(self, name: str, value: str) -> None:
        self.envs[name] = value
        self.save()

    def remove_env(self, name: str) -> bool:
        if self.envs.pop(name, None) is None:
            return False
        self.save()
        return True

    def reset_envs(self) -> None:
        self.envs.clear()
        self.save()

    # ------------------------------------------------------------------
    # Admins
    # ------------------------------------------------------------------

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admins

    def admin_ids(self) -> list[int]:
        return sorted(self.admins)

    def add_admin(self, user_id: int) -> None:
        self.admins.add(user_id)
        self.save()

    def remove_admin(self, user_id: int) -> bool:
        if user_id not in self.admins:
            return False
        self.admins.discard(user_id)
        self.save()
        return True


async def resolve_revision(
    name: str,
    runner: ProcessRunner,
    repo_url: str,
) -> Revision | None:
    """Decide whether ``name`` is a remote branch or a commit hash.

    Branches are checked against the remote.  Commits are only checked for
    shape here; the pipeline verifies the object after fetching.
    """
    name = name.strip()
    if not name:
        return None

    is_branch = await runner.succeeds(CommandSpec(
        "git", ["ls-remote", "--exit-code", "--heads", repo_url, name],
    ))
    if is_branch:
        return Revision.branch(name)
    if _COMMIT_RE.match(name):
        return Revision.commit(name)
    return None
