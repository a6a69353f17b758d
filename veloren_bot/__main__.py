import logging

from .bot import VelorenBot
from .config import Config
from .controller import ServerController
from .process_manager import GameServerSupervisor
from .state import StateStore

config = Config.from_env()

logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)

supervisor = GameServerSupervisor(
    config.resolve_workdir(),
    repo_url=config.gameserver_repo,
    binary=config.gameserver_binary,
)
controller = ServerController(supervisor, StateStore.load(config.state_path))
bot = VelorenBot(config, controller)
bot.run(config.discord_token, log_handler=None)
