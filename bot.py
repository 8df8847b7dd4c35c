import logging
import discord
from discord.ext import commands

from autoinit import AutoInitiative
from config import load_campaign, load_token, setup_logging
from discord_commands import wire_commands

log = logging.getLogger("bot")

def build_bot(app: AutoInitiative) -> commands.Bot:
    intents = discord.Intents.default()
    intents.message_content = True

    bot = commands.Bot(command_prefix="!", intents=intents)

    @bot.event
    async def on_ready():
        log.info("✅ Logged in as %s", bot.user)

    wire_commands(bot, app)
    return bot

def main():
    setup_logging()
    app = AutoInitiative(load_campaign())
    bot = build_bot(app)
    bot.run(load_token(), log_handler=None)

if __name__ == "__main__":
    main()
