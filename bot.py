# bot.py
# EZBshop bridge bot: polls the shop website for pending work and runs the
# ticket channels, with a small FastAPI endpoint for member checks.
# Requirements: see pyproject.toml
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import discord
from discord.ext import commands

from bot_config import ConfigError, Settings, load_settings
from interactions import TicketInteractions, check_member_command
from member_api import create_app, start_api_thread
from members import MemberCheckCache, MemberReconciler
from notifications import NotificationDispatcher
from polling import QueuePoller, bridge_queues
from quotes import QuoteService
from ticket_lifecycle import TicketLifecycle
from tickets import TicketRegistry, TicketService
from website_client import WebsiteClient

log = logging.getLogger("ezb-bot")

# intents
INTENTS = discord.Intents.default()
INTENTS.guilds = True
INTENTS.members = True
INTENTS.guild_messages = True
INTENTS.message_content = True


# -------------------------
# Bot class
# -------------------------
class TicketBot(commands.Bot):
    def __init__(self, settings: Settings):
        super().__init__(command_prefix="!", intents=INTENTS)
        self.settings = settings
        self.website = WebsiteClient(settings.website_url, settings.api_secret)
        self.registry = TicketRegistry()
        self.member_cache = MemberCheckCache(settings.member_cache_ttl)

        self.tickets = TicketService(self, settings, self.registry, self.website)
        self.lifecycle = TicketLifecycle(settings, self.registry)
        self.notifier = NotificationDispatcher(self, settings)
        self.quotes = QuoteService(self, settings, self.website)
        self.members = MemberReconciler(self, settings, self.member_cache)
        self.interactions = TicketInteractions(self, settings, self.lifecycle, self.quotes)

        self.pollers: List[QueuePoller] = [
            QueuePoller(
                spec,
                self.website,
                interval=settings.poll_interval,
                max_backoff=settings.max_poll_backoff,
            )
            for spec in bridge_queues(self.tickets, self.notifier, self.quotes, self.members)
        ]
        self._started = False

    async def setup_hook(self) -> None:
        self.tree.add_command(check_member_command)
        guild_obj = discord.Object(id=self.settings.guild_id)
        try:
            self.tree.copy_global_to(guild=guild_obj)
            await self.tree.sync(guild=guild_obj)
        except discord.HTTPException as exc:
            # the bot keeps working without the slash command
            log.warning("Slash command sync failed: %s", exc)

    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s)", self.user, self.user.id)
        log.info("Guild ID: %s", self.settings.guild_id)
        log.info("Website URL: %s", self.settings.website_url)
        log.info("Bot API secret configured: %s", "yes" if self.settings.api_secret else "no")

        if self._started:
            return

        guild = self.get_guild(self.settings.guild_id)
        if guild is None:
            log.error(
                "The bot is not on guild %s: check DISCORD_GUILD_ID and the bot invite. "
                "Polling not started.",
                self.settings.guild_id,
            )
            return
        log.info("Guild found: %s (%s members)", guild.name, guild.member_count)

        try:
            await self.tickets.ensure_category(guild)
        except discord.HTTPException as exc:
            log.error("Ticket category setup failed, polling not started: %s", exc)
            return

        for poller in self.pollers:
            poller.start()
        self._started = True
        log.info("Started %d queue pollers (every %ss)", len(self.pollers), self.settings.poll_interval)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        try:
            await self.interactions.dispatch(interaction)
        except discord.HTTPException as exc:
            log.error("Interaction %s failed: %s", interaction.id, exc)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        order_id = self.registry.lookup(message.channel.id)
        if order_id is None:
            return
        log.info("Message in ticket %s from %s: %s", order_id, message.author, message.content)

    async def on_member_join(self, member: discord.Member) -> None:
        if member.guild.id == self.settings.guild_id:
            self.member_cache.record(member.id, True)
        log.info("New member: %s", member)

    async def on_member_remove(self, member: discord.Member) -> None:
        if member.guild.id == self.settings.guild_id:
            self.member_cache.record(member.id, False)
        log.info("Member left: %s", member)

    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        order_id = self.registry.lookup(channel.id)
        if order_id is not None:
            self.lifecycle.channel_deleted(channel.id)
            log.info("Ticket channel for order %s was deleted", order_id)

    async def check_member_from_api(self, user_id: int) -> bool:
        """Run a member check on the bot loop from the API server's thread."""
        future = asyncio.run_coroutine_threadsafe(
            self.members.check_membership(user_id), self.loop
        )
        return await asyncio.wrap_future(future)

    async def close(self) -> None:
        for poller in self.pollers:
            poller.stop()
        log.info(
            "Shutting down with %d open tickets, %d channel deletions abandoned",
            len(self.registry.open_tickets()),
            self.lifecycle.pending_deletions(),
        )
        await self.website.close()
        await super().close()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------
# run
# -------------------------
def main(settings: Optional[Settings] = None) -> None:
    if settings is None:
        try:
            settings = load_settings()
        except ConfigError as exc:
            print(f"ERROR: {exc} (see .env.example)")
            raise SystemExit(1)

    configure_logging(settings.log_level)
    bot = TicketBot(settings)

    # start the API thread before the bot event loop so it's available
    start_api_thread(create_app(settings.api_secret, bot.check_member_from_api), settings.port)
    bot.run(settings.bot_token, log_handler=None)


if __name__ == "__main__":
    main()
