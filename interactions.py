# interactions.py
# Button clicks and the /check-member command.
from __future__ import annotations

import logging

import discord
from discord import app_commands

from bot_config import Settings
from custom_ids import (
    AcceptQuote,
    CancelClose,
    CloseTicket,
    ConfirmClose,
    CreateQuote,
    MalformedCustomId,
    TicketAction,
    decode,
    is_ticket_custom_id,
)
from quotes import QuoteService
from ticket_lifecycle import (
    AuthorizationDenied,
    ClosePromptView,
    InvalidTransition,
    TicketLifecycle,
)

log = logging.getLogger("ezb-bot.interactions")

ADMIN_ONLY_CLOSE = "❌ Seuls les admins peuvent fermer les tickets."
ADMIN_ONLY = "❌ Cette action est réservée aux admins."
CLOSE_PROMPT = "⚠️ Êtes-vous sûr de vouloir fermer ce ticket ? Il sera supprimé dans {delay} secondes."
CLOSE_ALREADY_PENDING = "⚠️ Une demande de fermeture est déjà en cours pour ce ticket."
CLOSE_STALE = "Cette demande de fermeture n'est plus valide."
GUILD_NOT_FOUND = "Serveur non trouvé"


class TicketInteractions:
    def __init__(
        self,
        bot: discord.Client,
        settings: Settings,
        lifecycle: TicketLifecycle,
        quotes: QuoteService,
    ):
        self.bot = bot
        self.settings = settings
        self.lifecycle = lifecycle
        self.quotes = quotes

    async def dispatch(self, interaction: discord.Interaction) -> bool:
        """Route a component interaction carrying one of our button ids."""
        if interaction.type is not discord.InteractionType.component:
            return False
        custom_id = (interaction.data or {}).get("custom_id", "")
        if not is_ticket_custom_id(custom_id):
            return False

        try:
            action = decode(custom_id)
        except MalformedCustomId as exc:
            log.warning("Ignoring button: %s", exc)
            await interaction.response.send_message("Action inconnue.", ephemeral=True)
            return True

        await self.handle(interaction, action)
        return True

    async def handle(self, interaction: discord.Interaction, action: TicketAction) -> None:
        if isinstance(action, CloseTicket):
            await self.request_close(interaction, action)
        elif isinstance(action, ConfirmClose):
            await self.confirm_close(interaction, action)
        elif isinstance(action, CancelClose):
            await self.cancel_close(interaction, action)
        elif isinstance(action, CreateQuote):
            if not self.settings.is_admin(interaction.user.id):
                await interaction.response.send_message(ADMIN_ONLY, ephemeral=True)
                return
            await self.quotes.explain_quote_creation(interaction, action.order_id)
        elif isinstance(action, AcceptQuote):
            await self.quotes.accept_quote(interaction, action.order_id)

    async def request_close(self, interaction: discord.Interaction, action: CloseTicket) -> None:
        channel_id = interaction.channel_id
        try:
            token = self.lifecycle.request_close(channel_id, interaction.user.id)
        except AuthorizationDenied:
            await interaction.response.send_message(ADMIN_ONLY_CLOSE, ephemeral=True)
            return
        except InvalidTransition:
            await interaction.response.send_message(CLOSE_ALREADY_PENDING, ephemeral=True)
            return

        log.info("Close requested for order %s by %s", action.order_id, interaction.user.id)
        await interaction.response.send_message(
            CLOSE_PROMPT.format(delay=int(self.lifecycle.grace_seconds)),
            view=ClosePromptView(self.lifecycle, channel_id, token),
            ephemeral=True,
        )

    async def confirm_close(self, interaction: discord.Interaction, action: ConfirmClose) -> None:
        try:
            self.lifecycle.confirm(action.channel_id, interaction.user.id)
        except AuthorizationDenied:
            await interaction.response.send_message(ADMIN_ONLY_CLOSE, ephemeral=True)
            return
        except InvalidTransition:
            await interaction.response.edit_message(content=CLOSE_STALE, view=None)
            return

        await interaction.response.edit_message(content="✅ Fermeture du ticket...", view=None)
        channel = self.bot.get_channel(action.channel_id)
        if channel is None:
            self.lifecycle.channel_deleted(action.channel_id)
            return
        self.lifecycle.schedule_deletion(channel)

    async def cancel_close(self, interaction: discord.Interaction, action: CancelClose) -> None:
        try:
            self.lifecycle.cancel(action.channel_id)
        except InvalidTransition:
            await interaction.response.edit_message(content=CLOSE_STALE, view=None)
            return
        await interaction.response.edit_message(content="❌ Fermeture annulée.", view=None)


@app_commands.command(name="check-member", description="Vérifie si un utilisateur est sur le serveur")
@app_commands.describe(user_id="ID Discord de l'utilisateur")
async def check_member_command(interaction: discord.Interaction, user_id: str):
    bot = interaction.client
    if bot.get_guild(bot.settings.guild_id) is None:
        await interaction.response.send_message(GUILD_NOT_FOUND, ephemeral=True)
        return

    try:
        is_on_server = await bot.members.check_membership(int(user_id))
    except ValueError:
        is_on_server = False

    if is_on_server:
        await interaction.response.send_message("✅ L'utilisateur est sur le serveur", ephemeral=True)
    else:
        await interaction.response.send_message("❌ L'utilisateur n'est pas sur le serveur", ephemeral=True)
