from __future__ import annotations

from itertools import count
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot_config import Settings

GUILD_ID = 1000
ADMINS = (900, 901)


@pytest.fixture
def settings():
    return Settings(
        bot_token="token",
        guild_id=GUILD_ID,
        website_url="https://shop.test",
        api_secret="s3cret",
        admin_ids=ADMINS,
        customer_role_id=555,
        close_grace_seconds=0.01,
    )


@pytest.fixture
def guild():
    ids = count(5000)
    g = MagicMock()
    g.id = GUILD_ID
    g.default_role = MagicMock(name="@everyone")
    g.categories = []
    g.created_channels = []

    async def create_text_channel(name, **kwargs):
        channel = MagicMock()
        channel.id = next(ids)
        channel.name = name
        channel.send = AsyncMock()
        channel.delete = AsyncMock()
        g.created_channels.append((channel, kwargs))
        return channel

    g.create_text_channel = AsyncMock(side_effect=create_text_channel)
    g.create_category = AsyncMock()
    g.fetch_member = AsyncMock()
    return g


@pytest.fixture
def bot(guild):
    b = MagicMock()
    b.get_guild.side_effect = lambda gid: guild if gid == GUILD_ID else None
    b.get_channel.return_value = None
    b.fetch_user = AsyncMock()
    return b


@pytest.fixture
def website():
    w = MagicMock()
    w.fetch_queue = AsyncMock(return_value=[])
    w.notify_ticket_created = AsyncMock()
    w.accept_quote = AsyncMock()
    return w
