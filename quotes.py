# quotes.py
# Quote-ready notifications and the customer's "buy" button.
from __future__ import annotations

import logging
from datetime import datetime, timezone

import discord

from bot_config import Settings
from custom_ids import AcceptQuote
from website_client import WebsiteAPIError, WebsiteClient
from work_items import QuoteNotification

log = logging.getLogger("ezb-bot.quotes")


def quote_view(order_id: str, price: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label=f"Acheter - {price}€",
            style=discord.ButtonStyle.success,
            emoji="💳",
            custom_id=AcceptQuote(order_id).encode(),
        )
    )
    return view


class QuoteService:
    def __init__(self, bot: discord.Client, settings: Settings, website: WebsiteClient):
        self.bot = bot
        self.settings = settings
        self.website = website

    async def send_quote_ready_notification(self, quote: QuoteNotification) -> bool:
        channel = self.bot.get_channel(quote.channel_id)
        if channel is None:
            log.info("Quote channel %s not found (order %s)", quote.channel_id, quote.order_id)
            return False

        embed = discord.Embed(
            title="✅ Votre devis est prêt !",
            description=(
                f"**Produit:** {quote.product_name}\n"
                f"**Prix:** {quote.price}€\n\n"
                f"**Description:**\n{quote.description}"
            ),
            color=discord.Color.from_str("#00ff00"),
            timestamp=datetime.now(tz=timezone.utc),
        )
        embed.add_field(
            name="💳 Paiement",
            value="Cliquez sur le bouton ci-dessous pour procéder au paiement",
            inline=False,
        )
        embed.set_footer(text="EZBshop - Devis personnalisé")

        try:
            await channel.send(
                content=f"<@{quote.user_id}>",
                embed=embed,
                view=quote_view(quote.order_id, quote.price),
            )
        except discord.HTTPException as exc:
            log.error("Quote notification for %s failed: %s", quote.order_id, exc)
            return False
        log.info("Quote notification sent for %s", quote.order_id)
        return True

    async def accept_quote(self, interaction: discord.Interaction, order_id: str) -> bool:
        """Customer clicked "buy": ask the website for a payment link."""
        await interaction.response.defer(ephemeral=True, thinking=True)

        try:
            payment_url = await self.website.accept_quote(order_id)
        except WebsiteAPIError as exc:
            log.warning("Quote acceptance for %s failed: %s", order_id, exc.message)
            await interaction.followup.send(f"❌ Erreur: {exc.message}", ephemeral=True)
            return False

        await interaction.followup.send(
            f"✅ Redirection vers le paiement...\n{payment_url}", ephemeral=True
        )
        log.info("Quote %s accepted by %s", order_id, interaction.user.id)

        if interaction.channel is not None:
            try:
                await interaction.channel.send(
                    f"<@{interaction.user.id}> a accepté le devis ! "
                    f"{self.settings.admin_mentions()}"
                )
            except discord.HTTPException as exc:
                log.error("Acceptance notice for %s not posted: %s", order_id, exc)
        return True

    async def explain_quote_creation(self, interaction: discord.Interaction, order_id: str) -> None:
        await interaction.response.send_message(
            f"Pour créer un devis pour la commande `{order_id}`, utilisez la commande:\n"
            f"```\n/devis {order_id} [nom_produit] [prix] [description]\n```",
            ephemeral=True,
        )
