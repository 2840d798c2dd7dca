# members.py
# Guild membership checks and customer role grants.
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import discord

from bot_config import Settings

log = logging.getLogger("ezb-bot.members")


@dataclass(frozen=True)
class MemberCheck:
    is_present: bool
    checked_at: datetime


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class MemberCheckCache:
    """Last known presence per user; entries older than the TTL are dropped."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[int, MemberCheck] = {}

    def record(self, user_id: int, is_present: bool) -> MemberCheck:
        now = self._clock()
        entry = MemberCheck(is_present=is_present, checked_at=now)
        with self._lock:
            self._entries[user_id] = entry
            stale = [uid for uid, e in self._entries.items() if now - e.checked_at > self.ttl]
            for uid in stale:
                del self._entries[uid]
        return entry

    def get(self, user_id: int) -> Optional[MemberCheck]:
        with self._lock:
            entry = self._entries.get(user_id)
        if entry is None or self._clock() - entry.checked_at > self.ttl:
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MemberReconciler:
    def __init__(self, bot: discord.Client, settings: Settings, cache: MemberCheckCache):
        self.bot = bot
        self.settings = settings
        self.cache = cache

    def _guild(self) -> Optional[discord.Guild]:
        return self.bot.get_guild(self.settings.guild_id)

    def _remember(self, user_id: int, is_present: bool) -> None:
        previous = self.cache.get(user_id)
        if previous is not None and previous.is_present != is_present:
            log.info(
                "Member %s %s the guild since %s",
                user_id,
                "joined" if is_present else "left",
                previous.checked_at.isoformat(),
            )
        self.cache.record(user_id, is_present)

    async def check_membership(self, user_id: int) -> bool:
        """Live check: is this user a member of the guild right now?"""
        guild = self._guild()
        if guild is None:
            log.error("Guild %s not available for member check", self.settings.guild_id)
            self._remember(user_id, False)
            return False

        try:
            member = await guild.fetch_member(user_id)
        except discord.HTTPException:
            log.info("Member %s not found", user_id)
            self._remember(user_id, False)
            return False

        log.info("Member found: %s", member)
        self._remember(user_id, True)
        return True

    async def assign_customer_role(self, user_id: int) -> bool:
        guild = self._guild()
        if guild is None:
            log.error("Guild %s not available, role not assigned to %s", self.settings.guild_id, user_id)
            return False

        role_id = self.settings.customer_role_id
        if not role_id:
            log.error("CUSTOMER_ROLE_ID not configured, role not assigned to %s", user_id)
            return False

        role = guild.get_role(role_id)
        if role is None:
            log.error("Customer role %s does not exist in guild %s", role_id, guild.id)
            return False

        try:
            member = await guild.fetch_member(user_id)
        except discord.HTTPException as exc:
            log.error("Member %s could not be resolved: %s", user_id, exc)
            return False

        if any(r.id == role_id for r in member.roles):
            log.info("%s already has the customer role", member)
            return False

        try:
            await member.add_roles(role, reason="Customer purchase")
        except discord.HTTPException as exc:
            log.error("Could not give customer role to %s: %s", member, exc)
            return False
        log.info("Customer role assigned to %s", member)
        return True
