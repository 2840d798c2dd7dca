# bot_config.py
# Environment-driven settings for the EZBshop bridge bot.
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv


class ConfigError(Exception):
    """A required setting is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    bot_token: str
    guild_id: int
    website_url: str
    api_secret: str
    admin_ids: Tuple[int, ...]
    customer_role_id: Optional[int] = None
    port: int = 3001
    poll_interval: float = 5.0
    close_grace_seconds: float = 5.0
    max_poll_backoff: float = 60.0
    member_cache_ttl: float = 3600.0
    ticket_category_name: str = "TICKETS"
    log_level: str = "INFO"

    def is_admin(self, user_id: int) -> bool:
        return int(user_id) in self.admin_ids

    def admin_mentions(self) -> str:
        return " ".join(f"<@{admin_id}>" for admin_id in self.admin_ids)


def _required(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigError(f"{key} is not set")
    return value


def _as_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _as_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{key} must be positive")
    return value


def parse_admin_ids(raw: str) -> Tuple[int, ...]:
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        admin_id = _as_int("ADMIN_IDS", part)
        if admin_id not in ids:
            ids.append(admin_id)
    if not ids:
        raise ConfigError("ADMIN_IDS must list at least one user id")
    return tuple(ids)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the process environment (after reading .env),
    or from an explicit mapping when one is given.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    role_raw = (env.get("CUSTOMER_ROLE_ID") or "").strip()
    port_raw = (env.get("PORT") or env.get("BOT_PORT") or "3001").strip()

    return Settings(
        bot_token=_required(env, "DISCORD_BOT_TOKEN"),
        guild_id=_as_int("DISCORD_GUILD_ID", _required(env, "DISCORD_GUILD_ID")),
        website_url=_required(env, "WEBSITE_URL").rstrip("/"),
        api_secret=_required(env, "BOT_API_SECRET"),
        admin_ids=parse_admin_ids(_required(env, "ADMIN_IDS")),
        customer_role_id=_as_int("CUSTOMER_ROLE_ID", role_raw) if role_raw else None,
        port=_as_int("PORT", port_raw),
        poll_interval=_as_float(env, "POLL_INTERVAL_SECONDS", 5.0),
        close_grace_seconds=_as_float(env, "CLOSE_GRACE_SECONDS", 5.0),
        max_poll_backoff=_as_float(env, "MAX_POLL_BACKOFF_SECONDS", 60.0),
        member_cache_ttl=_as_float(env, "MEMBER_CACHE_TTL_SECONDS", 3600.0),
        ticket_category_name=(env.get("TICKET_CATEGORY_NAME") or "TICKETS").strip(),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
