from __future__ import annotations

import io
import logging

import discord
from discord import app_commands

from .config import Config
from .controller import ServerController
from .formatter import codeblock_message, status_embed, system_embed
from .models import ServerFile

log = logging.getLogger(__name__)

VERSION = "0.4.0"


class VelorenBot(discord.Client):
    def __init__(self, config: Config, controller: ServerController) -> None:
        intents = discord.Intents.default()
        super().__init__(intents=intents)

        self.config = config
        self.controller = controller
        self.tree = app_commands.CommandTree(self)

        self._register_commands()

    # ------------------------------------------------------------------
    # Permission checks
    # ------------------------------------------------------------------

    def _is_owner(self, user_id: int) -> bool:
        return self.config.owner_id is not None and user_id == self.config.owner_id

    def _is_admin(self, user_id: int) -> bool:
        return self._is_owner(user_id) or self.controller.state.is_admin(user_id)

    async def _deny_unless_admin(self, interaction: discord.Interaction) -> bool:
        """Reply with an error and return True if the user is not an admin."""
        if self._is_admin(interaction.user.id):
            return False
        await interaction.response.send_message(
            embed=system_embed("You need to be an Admin to execute this command."),
            ephemeral=True,
        )
        return True

    async def _deny_unless_owner(self, interaction: discord.Interaction) -> bool:
        if self._is_owner(interaction.user.id):
            return False
        await interaction.response.send_message(
            embed=system_embed("You need to be the bot owner to execute this command."),
            ephemeral=True,
        )
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _register_commands(self) -> None:
        ctl = self.controller

        @self.tree.command(name="about", description="Explains what this bot is about")
        async def cmd_about(interaction: discord.Interaction):
            embed = discord.Embed(title=f"Veloren Server Bot v{VERSION}")
            embed.add_field(
                name="Purpose of this bot",
                value="Provide easy access to the Veloren testing server.",
                inline=True,
            )
            await interaction.response.send_message(embed=embed)

        @self.tree.command(name="status", description="Current status of the Veloren server")
        async def cmd_status(interaction: discord.Interaction):
            state = ctl.state
            await interaction.response.send_message(embed=status_embed(
                ctl.status(),
                ctl.version(),
                state.revision,
                self.config.gameserver_address,
                envs=state.envs,
                args=state.gameserver_args,
                build_args=state.build_args,
            ))

        @self.tree.command(
            name="start",
            description="Start the server. Fetches, switches revision and recompiles as needed",
        )
        async def cmd_start(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            if await ctl.start():
                text = "Started Veloren Server. Check with `/status` for its progress."
            else:
                text = "Veloren Server is already running. Use `/restart` to rebuild it."
            await interaction.followup.send(embed=system_embed(text))

        @self.tree.command(name="stop", description="Stop the Veloren server")
        async def cmd_stop(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            if await ctl.stop():
                text = "Stopped the Veloren Server."
            else:
                text = "Veloren Server was not running."
            await interaction.followup.send(embed=system_embed(text))

        @self.tree.command(
            name="restart",
            description="Restart the server. Fetches, switches revision and recompiles as needed",
        )
        async def cmd_restart(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            await ctl.restart()
            await interaction.followup.send(embed=system_embed(
                "Restarted Veloren Server. Check with `/status` for its progress."
            ))

        @self.tree.command(name="prune", description="Run cargo clean and restart the server")
        async def cmd_prune(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            if await ctl.clean():
                text = "Cleaned and restarted server."
            else:
                text = "Failed to clean. Check the logs for more information."
            await interaction.followup.send(embed=system_embed(text))

        @self.tree.command(
            name="rev",
            description="Switch the branch or commit of the server. Restarts the server",
        )
        @app_commands.describe(rev="Branch name or commit hash")
        async def cmd_rev(interaction: discord.Interaction, rev: str):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            revision = await ctl.change_revision(rev)
            if revision is None:
                text = f"`{rev}` does not exist!"
            else:
                text = (
                    f"Changed to {revision.kind.value} `{revision}`. "
                    "Check with `/status` for the server's progress."
                )
            await interaction.followup.send(embed=system_embed(text))

        @self.tree.command(name="quit", description="Stop the server and shut down the bot")
        async def cmd_quit(interaction: discord.Interaction):
            if await self._deny_unless_owner(interaction):
                return
            await interaction.response.send_message(embed=system_embed("Shutting down!"))
            await self.change_presence(status=discord.Status.offline)
            await self.close()

        self.tree.add_command(self._args_group())
        self.tree.add_command(self._cargo_group())
        self.tree.add_command(self._envs_group())
        self.tree.add_command(self._files_group())
        self.tree.add_command(self._admin_group())

    def _args_group(self) -> app_commands.Group:
        state = self.controller.state
        group = app_commands.Group(name="args", description="Manage arguments passed to the gameserver")

        @group.command(name="add", description="Add an argument passed to the gameserver")
        async def add(interaction: discord.Interaction, argument: str):
            if await self._deny_unless_admin(interaction):
                return
            state.add_arg(argument)
            await interaction.response.send_message(
                embed=system_embed(f"Added `{argument}` as gameserver argument.")
            )

        @group.command(name="remove", description="Remove an argument passed to the gameserver")
        async def remove(interaction: discord.Interaction, argument: str):
            if await self._deny_unless_admin(interaction):
                return
            if state.remove_arg(argument):
                text = f"Removed `{argument}` from the gameserver arguments."
            else:
                text = f"`{argument}` is not a gameserver argument."
            await interaction.response.send_message(embed=system_embed(text))

        @group.command(name="list", description="List arguments passed to the gameserver")
        async def list_(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            lines = [f"`{a}`" for a in state.gameserver_args] or ["_No gameserver arguments set._"]
            await interaction.response.send_message(
                embed=system_embed("**Gameserver Arguments:**\n" + "\n".join(lines))
            )

        @group.command(name="reset", description="Reset the gameserver arguments")
        async def reset(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            state.reset_args()
            await interaction.response.send_message(
                embed=system_embed("Reset all gameserver arguments to default.")
            )

        return group

    def _cargo_group(self) -> app_commands.Group:
        state = self.controller.state
        group = app_commands.Group(name="cargo", description="Manage arguments passed to cargo")

        @group.command(name="add", description="Add an argument passed to cargo")
        async def add(interaction: discord.Interaction, argument: str):
            if await self._deny_unless_admin(interaction):
                return
            state.add_build_arg(argument)
            await interaction.response.send_message(
                embed=system_embed(f"Added `{argument}` as cargo argument.")
            )

        @group.command(name="remove", description="Remove an argument passed to cargo")
        async def remove(interaction: discord.Interaction, argument: str):
            if await self._deny_unless_admin(interaction):
                return
            if state.remove_build_arg(argument):
                text = f"Removed `{argument}` from the cargo arguments."
            else:
                text = f"`{argument}` is not a cargo argument."
            await interaction.response.send_message(embed=system_embed(text))

        @group.command(name="list", description="List arguments passed to cargo")
        async def list_(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            lines = [f"`{a}`" for a in state.build_args] or ["_No cargo arguments set._"]
            await interaction.response.send_message(
                embed=system_embed("**Cargo Arguments:**\n" + "\n".join(lines))
            )

        @group.command(name="reset", description="Reset the cargo arguments")
        async def reset(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            state.reset_build_args()
            await interaction.response.send_message(
                embed=system_embed("Reset all cargo arguments to default.")
            )

        return group

    def _envs_group(self) -> app_commands.Group:
        state = self.controller.state
        group = app_commands.Group(
            name="envs", description="Manage environment variables passed to the gameserver",
        )

        @group.command(name="set", description="Set an environment variable")
        @app_commands.describe(name="Environment variable name", value="Environment variable value")
        async def set_(interaction: discord.Interaction, name: str, value: str):
            if await self._deny_unless_admin(interaction):
                return
            state.set_env(name, value)
            await interaction.response.send_message(
                embed=system_embed(f"Set `{name}`=`{value}` as environment variable.")
            )

        @group.command(name="remove", description="Remove an environment variable")
        async def remove(interaction: discord.Interaction, name: str):
            if await self._deny_unless_admin(interaction):
                return
            if state.remove_env(name):
                text = f"Removed `{name}` from the environment variables."
            else:
                text = f"`{name}` is not set."
            await interaction.response.send_message(embed=system_embed(text))

        @group.command(name="list", description="List all environment variables")
        async def list_(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            lines = [f"`{k} : {v}`" for k, v in state.envs.items()]
            lines = lines or ["_No environment variables set._"]
            await interaction.response.send_message(
                embed=system_embed("**Environment variables:**\n" + "\n".join(lines))
            )

        @group.command(name="reset", description="Remove all environment variables")
        async def reset(interaction: discord.Interaction):
            if await self._deny_unless_admin(interaction):
                return
            state.reset_envs()
            await interaction.response.send_message(
                embed=system_embed("Reset all environment variables to default.")
            )

        return group

    def _files_group(self) -> app_commands.Group:
        ctl = self.controller
        group = app_commands.Group(name="files", description="Manage Veloren server files")

        @group.command(name="upload", description="Replace a server file and restart the server")
        @app_commands.describe(file="Which file to replace", newfile="New contents of the file")
        async def upload(interaction: discord.Interaction, file: ServerFile, newfile: discord.Attachment):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            try:
                content = await newfile.read()
            except discord.HTTPException as exc:
                await interaction.followup.send(
                    embed=system_embed(f"Error downloading attachment: {exc}")
                )
                return
            try:
                await ctl.replace_file(file, content)
            except OSError as exc:
                log.error("Failed to write %s: %s", file.value, exc)
                text = f"Failed to write file: {exc}"
            else:
                text = "File uploaded and server restarted."
            await interaction.followup.send(embed=system_embed(text))

        @group.command(name="remove", description="Delete a server file and restart the server")
        @app_commands.describe(file="Which file to remove")
        async def remove(interaction: discord.Interaction, file: ServerFile):
            if await self._deny_unless_admin(interaction):
                return
            await interaction.response.defer()
            try:
                await ctl.remove_file(file)
            except OSError as exc:
                log.error("Failed to delete %s: %s", file.value, exc)
                text = f"Failed to delete file: {exc}"
            else:
                text = "File removed and server restarted."
            await interaction.followup.send(embed=system_embed(text))

        @group.command(name="view", description="Show the contents of a server file")
        @app_commands.describe(file="Which file to view")
        async def view(interaction: discord.Interaction, file: ServerFile):
            if await self._deny_unless_admin(interaction):
                return
            try:
                content = ctl.read_file(file)
            except OSError as exc:
                await interaction.response.send_message(
                    embed=system_embed(f"Failed to read file: {exc}")
                )
                return

            message = None
            if file.is_text:
                message = codeblock_message(content.decode("utf-8", errors="replace"))
            if message is not None:
                await interaction.response.send_message(message)
            else:
                # Binary or too long for a message: send it as an attachment
                path = ctl.file_path(file)
                await interaction.response.send_message(
                    file=discord.File(io.BytesIO(content), filename=path.name),
                    ephemeral=True,
                )

        return group

    def _admin_group(self) -> app_commands.Group:
        state = self.controller.state
        group = app_commands.Group(name="admin", description="Manage bot admins")

        @group.command(name="add", description="Allow a user to control the server")
        async def add(interaction: discord.Interaction, user: discord.User):
            if await self._deny_unless_owner(interaction):
                return
            state.add_admin(user.id)
            await interaction.response.send_message(
                embed=system_embed(f"Added {user.mention} as admin.")
            )

        @group.command(name="remove", description="Revoke a user's admin rights")
        async def remove(interaction: discord.Interaction, user: discord.User):
            if await self._deny_unless_owner(interaction):
                return
            if state.remove_admin(user.id):
                text = f"Removed {user.mention} from the admins."
            else:
                text = f"{user.mention} is not an admin."
            await interaction.response.send_message(embed=system_embed(text))

        @group.command(name="list", description="List the users allowed to control the server")
        async def list_(interaction: discord.Interaction):
            if await self._deny_unless_owner(interaction):
                return
            lines = [f"<@{uid}> ({uid})" for uid in state.admin_ids()] or ["_No Admins found._"]
            await interaction.response.send_message(
                embed=system_embed("**Admins:**\n" + "\n".join(lines))
            )

        return group

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup_hook(self) -> None:
        supervisor = self.controller.supervisor
        versions = await supervisor.toolchain_versions()
        log.info(
            "Current environment %s",
            ", ".join(f"{k}={v}" for k, v in versions.items()),
        )
        await supervisor.ensure_checkout()

    async def on_ready(self) -> None:
        await self.tree.sync()
        log.info("Logged in as %s (ID: %s)", self.user, self.user.id)
        log.info("Synced slash commands")
        if self.config.gameserver_address:
            await self.change_presence(
                status=discord.Status.online,
                activity=discord.Game(name=self.config.gameserver_address),
            )

    async def on_resumed(self) -> None:
        log.info("Connection to discord resumed.")

    async def on_app_command_completion(
        self,
        interaction: discord.Interaction,
        command: app_commands.Command | app_commands.ContextMenu,
    ) -> None:
        log.info("Got command '%s' by user '%s'", command.qualified_name, interaction.user)

    async def close(self) -> None:
        await self.controller.shutdown()
        await super().close()
