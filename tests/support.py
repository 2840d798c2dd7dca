from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import discord


def make_interaction(user_id, channel_id=7000, custom_id=None):
    interaction = MagicMock()
    interaction.id = 1
    interaction.user.id = user_id
    interaction.channel_id = channel_id
    interaction.channel.send = AsyncMock()
    interaction.response.send_message = AsyncMock()
    interaction.response.edit_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    if custom_id is not None:
        interaction.type = discord.InteractionType.component
        interaction.data = {"custom_id": custom_id}
    return interaction
