# tickets.py
# Ticket registry, channel naming and the ticket / quote-ticket creation handlers.
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

import discord

from bot_config import Settings
from custom_ids import CloseTicket, CreateQuote
from website_client import WebsiteAPIError, WebsiteClient
from work_items import QuoteTicketRequest, TicketRequest

log = logging.getLogger("ezb-bot.tickets")

EMBED_COLOR = discord.Color.from_str("#ff0040")
FOOTER = "EZBshop"


# -------------------------
# channel classifier
# -------------------------
def classify(service_id: Optional[str]) -> str:
    """Channel-name prefix for a service id; first matching rule wins."""
    if not service_id:
        return "ticket"
    service = service_id.lower()
    if "base" in service or "devis" in service:
        return "devis"
    if "mapping" in service or "map" in service:
        return "mapping"
    if "script" in service:
        return "script"
    return "ticket"


def channel_name_for(prefix: str, order_id: str) -> str:
    return f"{prefix}-{order_id[:8]}"


# -------------------------
# registry
# -------------------------
class TicketKind(str, Enum):
    TICKET = "ticket"
    QUOTE_TICKET = "quote_ticket"


@dataclass
class TicketRecord:
    order_id: str
    kind: TicketKind
    channel_id: Optional[int] = None  # None while the channel is being created
    closed: bool = False
    created_at: Optional[datetime] = None


class TicketRegistry:
    """
    Which order already has a ticket channel.

    An order is claimed with reserve() before its channel is created, so two
    handlers racing on the same order cannot both create one. Closed tickets
    keep their record: an order never gets a second channel.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, TicketRecord] = {}

    def exists(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._records

    def reserve(self, order_id: str, kind: TicketKind = TicketKind.TICKET) -> bool:
        with self._lock:
            if order_id in self._records:
                return False
            self._records[order_id] = TicketRecord(order_id=order_id, kind=kind)
            return True

    def register(
        self, order_id: str, channel_id: int, kind: TicketKind = TicketKind.TICKET
    ) -> TicketRecord:
        with self._lock:
            record = self._records.get(order_id)
            if record is None:
                record = TicketRecord(order_id=order_id, kind=kind)
                self._records[order_id] = record
            record.channel_id = int(channel_id)
            record.kind = kind
            record.created_at = datetime.now(tz=timezone.utc)
            return record

    def release(self, order_id: str) -> None:
        """Drop a claim whose channel was never created."""
        with self._lock:
            record = self._records.get(order_id)
            if record is not None and record.channel_id is None:
                del self._records[order_id]

    def lookup(self, channel_id: int) -> Optional[str]:
        with self._lock:
            for record in self._records.values():
                if record.channel_id == channel_id and not record.closed:
                    return record.order_id
        return None

    def get(self, order_id: str) -> Optional[TicketRecord]:
        with self._lock:
            return self._records.get(order_id)

    def mark_closed(self, channel_id: int) -> Optional[str]:
        with self._lock:
            for record in self._records.values():
                if record.channel_id == channel_id and not record.closed:
                    record.closed = True
                    return record.order_id
        return None

    def open_tickets(self) -> List[TicketRecord]:
        with self._lock:
            return [
                r for r in self._records.values() if r.channel_id is not None and not r.closed
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# -------------------------
# views
# -------------------------
def close_button(order_id: str) -> discord.ui.Button:
    return discord.ui.Button(
        label="Fermer le ticket",
        style=discord.ButtonStyle.danger,
        emoji="🔒",
        custom_id=CloseTicket(order_id).encode(),
    )


def ticket_view(order_id: str, *, quote: bool = False) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    if quote:
        view.add_item(
            discord.ui.Button(
                label="Créer un devis",
                style=discord.ButtonStyle.primary,
                emoji="💰",
                custom_id=CreateQuote(order_id).encode(),
            )
        )
    view.add_item(close_button(order_id))
    return view


# -------------------------
# creation handlers
# -------------------------
class TicketService:
    def __init__(
        self,
        bot: discord.Client,
        settings: Settings,
        registry: TicketRegistry,
        website: WebsiteClient,
    ):
        self.bot = bot
        self.settings = settings
        self.registry = registry
        self.website = website
        self.category: Optional[discord.CategoryChannel] = None

    async def ensure_category(self, guild: discord.Guild) -> discord.CategoryChannel:
        name = self.settings.ticket_category_name
        category = discord.utils.get(guild.categories, name=name)
        if category is None:
            category = await guild.create_category(name, reason="Ticket category")
            log.info("Created ticket category %s", name)
        self.category = category
        return category

    def overwrites_for(
        self, guild: discord.Guild, requester_id: int
    ) -> Dict[object, discord.PermissionOverwrite]:
        overwrites: Dict[object, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            discord.Object(id=requester_id, type=discord.Member): discord.PermissionOverwrite(
                view_channel=True, send_messages=True, read_message_history=True
            ),
        }
        for admin_id in self.settings.admin_ids:
            overwrites[discord.Object(id=admin_id, type=discord.Member)] = (
                discord.PermissionOverwrite(
                    view_channel=True,
                    send_messages=True,
                    read_message_history=True,
                    manage_channels=True,
                )
            )
        return overwrites

    async def _open_channel(
        self,
        order_id: str,
        requester_id: int,
        prefix: str,
        kind: TicketKind,
    ) -> Optional[discord.TextChannel]:
        guild = self.bot.get_guild(self.settings.guild_id)
        if guild is None:
            log.error("Guild %s not available, cannot open ticket %s", self.settings.guild_id, order_id)
            return None

        if not self.registry.reserve(order_id, kind):
            log.debug("Ticket for order %s already exists", order_id)
            return None

        try:
            channel = await guild.create_text_channel(
                name=channel_name_for(prefix, order_id),
                category=self.category,
                overwrites=self.overwrites_for(guild, requester_id),
                reason=f"Ticket for order {order_id}",
            )
        except Exception:
            self.registry.release(order_id)
            log.exception("Could not create ticket channel for order %s", order_id)
            return None

        self.registry.register(order_id, channel.id, kind)
        return channel

    async def create_ticket(self, item: TicketRequest) -> Optional[discord.TextChannel]:
        channel = await self._open_channel(
            item.order_id, item.user_id, classify(item.service_id), TicketKind.TICKET
        )
        if channel is None:
            return None

        embed = discord.Embed(
            title="🎫 Nouveau ticket",
            description=f"Le devis de **{item.username}** est prêt !",
            color=EMBED_COLOR,
            timestamp=datetime.now(tz=timezone.utc),
        )
        embed.add_field(name="📦 Service", value=item.service_id or "Service", inline=True)
        embed.add_field(name="🔢 ID", value=f"#{item.order_id[:8]}", inline=True)
        embed.add_field(
            name="🔗 Voir le devis",
            value=f"[Cliquez ici]({self.settings.website_url}/quote/{item.order_id})",
            inline=False,
        )
        embed.set_footer(text=FOOTER)

        try:
            await channel.send(
                content=(
                    f"<@{item.user_id}> Bienvenue ! Notre équipe va prendre en charge "
                    f"votre commande. {self.settings.admin_mentions()}"
                ),
                embed=embed,
                view=ticket_view(item.order_id),
            )
        except Exception:
            log.exception("Ticket %s created but welcome message failed", channel.name)
            return channel

        log.info("Ticket created: %s (order %s)", channel.name, item.order_id)
        return channel

    async def create_quote_ticket(
        self, item: QuoteTicketRequest
    ) -> Optional[discord.TextChannel]:
        channel = await self._open_channel(
            item.order_id, item.discord_id, classify(item.service_type), TicketKind.QUOTE_TICKET
        )
        if channel is None:
            return None

        embed = discord.Embed(
            title="💼 Demande de Devis",
            description=f"**{item.username}** demande un devis",
            color=EMBED_COLOR,
            timestamp=datetime.now(tz=timezone.utc),
        )
        embed.add_field(name="📦 Service", value=item.service_type or "Service", inline=True)
        embed.add_field(name="🔢 ID", value=f"#{item.order_id[:8]}", inline=True)
        embed.add_field(name="📝 Description", value=item.description[:500] or "—", inline=False)
        embed.set_footer(text=FOOTER)

        try:
            await channel.send(
                content=(
                    f"<@{item.discord_id}> Bienvenue ! Notre équipe va étudier votre demande "
                    f"et vous proposer un devis personnalisé. {self.settings.admin_mentions()}"
                ),
                embed=embed,
                view=ticket_view(item.order_id, quote=True),
            )
            log.info("Quote ticket created: %s (order %s)", channel.name, item.order_id)
            await self.website.notify_ticket_created(item.order_id, channel.id)
        except WebsiteAPIError as exc:
            log.error("Website was not told about quote ticket %s: %s", channel.name, exc.message)
        except Exception:
            log.exception("Quote ticket %s created but welcome message failed", channel.name)
        return channel
