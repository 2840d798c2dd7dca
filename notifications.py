# notifications.py
# Best-effort delivery: ticket channel messages, direct messages, admin fan-out.
from __future__ import annotations

import logging

import discord

from bot_config import Settings

log = logging.getLogger("ezb-bot.notify")


class NotificationDispatcher:
    """
    Nothing here raises for a failed delivery. A blocked DM or a missing
    channel is logged and the website request counts as handled.
    """

    def __init__(self, bot: discord.Client, settings: Settings):
        self.bot = bot
        self.settings = settings

    async def send_channel_message(self, channel_id: int, content: str) -> bool:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            log.info("Channel %s not found, message dropped", channel_id)
            return False
        try:
            await channel.send(content)
        except discord.HTTPException as exc:
            log.error("Could not send message to channel %s: %s", channel_id, exc)
            return False
        return True

    async def send_direct_message(self, user_id: int, message: str) -> bool:
        log.info("Sending DM to user %s", user_id)
        try:
            user = await self.bot.fetch_user(user_id)
        except discord.HTTPException as exc:
            log.error("User %s could not be resolved: %s", user_id, exc)
            return False

        try:
            await user.send(message)
        except discord.HTTPException as exc:
            # blocked DMs, bot blocked, or no mutual guild
            log.warning("DM to %s (%s) failed: %s", user, user_id, exc)
            return False
        log.info("DM delivered to %s", user)
        return True

    async def broadcast_to_admins(self, message: str) -> int:
        """DM every admin in roster order; returns how many were reached."""
        log.info("Notifying %d admins", len(self.settings.admin_ids))
        delivered = 0
        for admin_id in self.settings.admin_ids:
            try:
                user = await self.bot.fetch_user(admin_id)
                await user.send(message)
            except Exception as exc:
                log.error("Admin notification to %s failed: %s", admin_id, exc)
                continue
            delivered += 1
        return delivered
