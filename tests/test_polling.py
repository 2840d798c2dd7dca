"""Queue pollers: dispatch order, error classification, overlap guard, backoff."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from custom_ids import CloseTicket
from polling import QueuePoller, QueueSpec, bridge_queues, is_suppressed
from tickets import TicketRegistry, TicketService
from website_client import WebsiteAPIError, WebsiteTransportError
from work_items import MalformedWorkItem, TicketRequest


def _spec(handler, *, optional=False, parse=lambda raw: raw):
    return QueueSpec("things", "/api/bot/things", "things", parse, handler, optional=optional)


# ---------------------------------------------------------------------------
# is_suppressed
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "status, optional, suppressed",
    [
        (401, False, True),
        (401, True, True),
        (404, True, True),
        (404, False, False),
        (500, True, False),
        (None, True, False),
    ],
)
def test_is_suppressed(status, optional, suppressed):
    assert is_suppressed(status, optional) is suppressed


# ---------------------------------------------------------------------------
# QueuePoller.poll_once
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_items_handled_sequentially_in_order(self, website):
        events = []

        async def handler(item):
            events.append(("start", item))
            await asyncio.sleep(0)
            events.append(("end", item))

        website.fetch_queue.return_value = [1, 2, 3]
        poller = QueuePoller(_spec(handler), website)

        assert await poller.poll_once() == 3
        website.fetch_queue.assert_awaited_once_with("/api/bot/things", "things")
        assert events == [
            ("start", 1), ("end", 1), ("start", 2), ("end", 2), ("start", 3), ("end", 3),
        ]

    @pytest.mark.asyncio
    async def test_malformed_item_is_skipped(self, website):
        def parse(raw):
            if raw == "bad":
                raise MalformedWorkItem("missing 'orderId'")
            return raw

        handler = AsyncMock()
        website.fetch_queue.return_value = ["a", "bad", "b"]
        poller = QueuePoller(_spec(handler, parse=parse), website)

        assert await poller.poll_once() == 2
        assert [c.args[0] for c in handler.await_args_list] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_abort_batch(self, website):
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])
        website.fetch_queue.return_value = ["a", "b"]
        poller = QueuePoller(_spec(handler), website)

        assert await poller.poll_once() == 1
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, website):
        release = asyncio.Event()

        async def handler(item):
            await release.wait()

        website.fetch_queue.return_value = ["slow"]
        poller = QueuePoller(_spec(handler), website)

        first = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)
        assert poller.in_flight is True
        assert await poller.poll_once() == 0
        assert website.fetch_queue.await_count == 1

        release.set()
        assert await first == 1
        assert poller.in_flight is False


class TestFailures:
    @pytest.mark.asyncio
    async def test_401_is_silent(self, website, caplog):
        website.fetch_queue.side_effect = WebsiteAPIError(401, "Unauthorized")
        poller = QueuePoller(_spec(AsyncMock()), website)
        with caplog.at_level(logging.DEBUG, logger="ezb-bot.polling"):
            assert await poller.poll_once() == 0
        assert [r for r in caplog.records if r.name.startswith("ezb-bot")] == []
        assert poller.failures == 0

    @pytest.mark.asyncio
    async def test_404_silent_on_optional_queue(self, website, caplog):
        website.fetch_queue.side_effect = WebsiteAPIError(404, "Not Found")
        poller = QueuePoller(_spec(AsyncMock(), optional=True), website)
        with caplog.at_level(logging.DEBUG, logger="ezb-bot.polling"):
            await poller.poll_once()
        assert [r for r in caplog.records if r.name.startswith("ezb-bot")] == []

    @pytest.mark.asyncio
    async def test_404_logged_on_required_queue(self, website, caplog):
        website.fetch_queue.side_effect = WebsiteAPIError(404, "Not Found")
        poller = QueuePoller(_spec(AsyncMock()), website)
        with caplog.at_level(logging.ERROR, logger="ezb-bot.polling"):
            await poller.poll_once()
        assert "Polling things failed" in caplog.text
        assert poller.failures == 1

    @pytest.mark.asyncio
    async def test_transport_error_backs_off_then_recovers(self, website):
        website.fetch_queue.side_effect = WebsiteTransportError("timeout")
        poller = QueuePoller(_spec(AsyncMock()), website, interval=5, max_backoff=60)

        await poller.poll_once()  # failure 1: no tick skipped
        await poller.poll_once()  # failure 2: next tick skipped
        assert website.fetch_queue.await_count == 2

        await poller.poll_once()
        assert website.fetch_queue.await_count == 2

        website.fetch_queue.side_effect = None
        website.fetch_queue.return_value = []
        await poller.poll_once()
        assert website.fetch_queue.await_count == 3
        assert poller.failures == 0

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, website):
        poller = QueuePoller(_spec(AsyncMock()), website, interval=5, max_backoff=20)
        poller.failures = 10
        poller._record_failure(WebsiteTransportError("down"))
        assert poller._skip_ticks == 3

    @pytest.mark.asyncio
    async def test_polling_never_gives_up(self, website):
        website.fetch_queue.side_effect = WebsiteAPIError(500, "oops")
        poller = QueuePoller(_spec(AsyncMock()), website, interval=5, max_backoff=5)
        for _ in range(20):
            await poller.poll_once()
        assert website.fetch_queue.await_count == 20


# ---------------------------------------------------------------------------
# bridge_queues
# ---------------------------------------------------------------------------


def test_bridge_queues_layout():
    specs = bridge_queues(MagicMock(), MagicMock(), MagicMock(), MagicMock())
    layout = [(s.path, s.key, s.optional) for s in specs]
    assert layout == [
        ("/api/bot/create-ticket", "tickets", False),
        ("/api/bot/send-message", "messages", False),
        ("/api/bot/create-quote-ticket", "tickets", True),
        ("/api/bot/send-quote", "quotes", True),
        ("/api/bot/send-dm", "dms", True),
        ("/api/bot/notify-admins", "notifications", True),
        ("/api/bot/assign-role", "assignments", True),
    ]


@pytest.mark.asyncio
async def test_message_queue_routes_to_dispatcher(website):
    notifier = MagicMock()
    notifier.send_channel_message = AsyncMock()
    specs = bridge_queues(MagicMock(), notifier, MagicMock(), MagicMock())
    website.fetch_queue.return_value = [{"channelId": "7000", "message": "Paiement reçu"}]

    await QueuePoller(specs[1], website).poll_once()

    notifier.send_channel_message.assert_awaited_once_with(7000, "Paiement reçu")


@pytest.mark.asyncio
async def test_role_queue_routes_to_reconciler(website):
    members = MagicMock()
    members.assign_customer_role = AsyncMock()
    specs = bridge_queues(MagicMock(), MagicMock(), MagicMock(), members)
    website.fetch_queue.return_value = [{"userId": "11"}, {"userId": "12"}]

    await QueuePoller(specs[6], website).poll_once()

    assert [c.args[0] for c in members.assign_customer_role.await_args_list] == [11, 12]


# ---------------------------------------------------------------------------
# end to end: ticket queue -> channel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ticket_poll_creates_one_channel(bot, settings, website, guild):
    registry = TicketRegistry()
    service = TicketService(bot, settings, registry, website)
    spec = bridge_queues(service, MagicMock(), MagicMock(), MagicMock())[0]
    # userId is a Discord snowflake: the channel overwrite is keyed on it
    website.fetch_queue.return_value = [
        {"orderId": "abc123def456", "userId": "11", "username": "alice", "serviceId": "devis-pack"}
    ]
    poller = QueuePoller(spec, website)

    assert await poller.poll_once() == 1

    assert guild.create_text_channel.await_count == 1
    channel, _ = guild.created_channels[0]
    assert channel.name == "devis-abc123de"
    assert registry.lookup(channel.id) == "abc123def456"
    view = channel.send.await_args.kwargs["view"]
    assert [b.custom_id for b in view.children] == [CloseTicket("abc123def456").encode()]

    await poller.poll_once()
    assert guild.create_text_channel.await_count == 1
    assert channel.send.await_count == 1


@pytest.mark.asyncio
async def test_ticket_with_non_snowflake_user_is_skipped(bot, settings, website, guild):
    registry = TicketRegistry()
    service = TicketService(bot, settings, registry, website)
    spec = bridge_queues(service, MagicMock(), MagicMock(), MagicMock())[0]
    website.fetch_queue.return_value = [
        {"orderId": "abc123def456", "userId": "U1", "username": "alice", "serviceId": "devis-pack"}
    ]

    assert await QueuePoller(spec, website).poll_once() == 0

    guild.create_text_channel.assert_not_awaited()
    assert not registry.exists("abc123def456")


@pytest.mark.asyncio
async def test_ticket_request_parsing(website):
    handler = AsyncMock()
    spec = QueueSpec("tickets", "/api/bot/create-ticket", "tickets", TicketRequest.from_payload, handler)
    website.fetch_queue.return_value = [
        {"orderId": "o1", "userId": "11", "username": "alice"},
        {"userId": "11"},
    ]
    assert await QueuePoller(spec, website).poll_once() == 1
    assert handler.await_args.args[0] == TicketRequest("o1", 11, "alice", None)
