"""Discord embeds for bot replies.

Status rendering is the only place where ServerStatus values are turned
into user-facing text.
"""

from __future__ import annotations

import discord

from .models import Revision, ServerStatus

# Embed colour for system messages (blue)
SYSTEM_COLOUR = discord.Colour(0x3498DB)

STATUS_COLOURS = {
    ServerStatus.ONLINE: discord.Colour(0x2ECC71),
    ServerStatus.UPDATING: discord.Colour(0xF1C40F),
    ServerStatus.COMPILING: discord.Colour(0xF1C40F),
    ServerStatus.OFFLINE: discord.Colour(0x95A5A6),
}
FAILED_COLOUR = discord.Colour(0xE74C3C)

# Discord rejects plain messages longer than this
MESSAGE_LIMIT = 2000


def system_embed(text: str) -> discord.Embed:
    """Build a blue embed for bot system messages."""
    return discord.Embed(description=f"🤖 {text}", colour=SYSTEM_COLOUR)


def _mono(text: str) -> str:
    return f"`{text}`"


def _codeblock(text: str, lang: str = "") -> str:
    # Keep user supplied backticks from closing the block early
    safe = text.replace("```", "`\u200b``")
    return f"```{lang}\n{safe}\n```"


def codeblock_message(text: str, lang: str = "rust") -> str | None:
    """Wrap file contents in a code block, or None if too long to send."""
    block = _codeblock(text, lang)
    return block if len(block) <= MESSAGE_LIMIT else None


def status_embed(
    status: ServerStatus,
    version: str | None,
    revision: Revision,
    address: str,
    *,
    envs: dict[str, str] | None = None,
    args: list[str] | None = None,
    build_args: list[str] | None = None,
) -> discord.Embed:
    colour = FAILED_COLOUR if status.failed else STATUS_COLOURS[status]
    e = discord.Embed(title=":bar_chart: Veloren Server Status", colour=colour)
    e.add_field(name="Status", value=_mono(status.label), inline=True)

    if revision.is_branch:
        if version:
            e.add_field(name="Commit", value=_mono(version), inline=True)
        e.add_field(name="Branch", value=_mono(revision.name), inline=False)
    else:
        e.add_field(name="Commit", value=_mono(revision.name), inline=False)

    if envs is not None:
        if envs:
            value = "\n".join(_codeblock(f"{k}={v}", "swift") for k, v in envs.items())
        else:
            value = "_No envs set._"
        e.add_field(name=":label: Environment variables", value=value, inline=False)

    if args is not None:
        value = _mono(" ".join(args)) if args else "_No gameserver arguments set._"
        e.add_field(name=":video_game: Gameserver arguments", value=value, inline=False)

    if build_args is not None:
        value = _mono(" ".join(build_args)) if build_args else "_No cargo arguments set._"
        e.add_field(name=":package: Cargo arguments", value=value, inline=False)

    if address:
        e.add_field(name="Address", value=_codeblock(address), inline=False)

    return e
