# polling.py
# One repeating task per website queue.
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping

from discord.ext import tasks

from members import MemberReconciler
from notifications import NotificationDispatcher
from quotes import QuoteService
from tickets import TicketService
from website_client import WebsiteAPIError, WebsiteClient
from work_items import (
    AdminNotification,
    DirectMessageRequest,
    MalformedWorkItem,
    MessageRequest,
    QuoteNotification,
    QuoteTicketRequest,
    RoleAssignmentRequest,
    TicketRequest,
)

log = logging.getLogger("ezb-bot.polling")


@dataclass(frozen=True)
class QueueSpec:
    name: str
    path: str
    key: str
    parse: Callable[[Mapping[str, Any]], Any]
    handler: Callable[[Any], Awaitable[Any]]
    optional: bool = False  # 404 means "not enabled on the website"


def is_suppressed(status, optional: bool) -> bool:
    """401 never gets logged; 404 is quiet for optional queues only."""
    if status == 401:
        return True
    return optional and status == 404


class QueuePoller:
    """
    Fetches one queue every ``interval`` seconds and feeds its items, in
    order and one at a time, to the queue's handler.

    A tick is skipped while the previous cycle is still in flight. After a
    logged failure the poller sits out 0, 1, 3, 7... ticks (capped by
    ``max_backoff``); the first successful fetch resets that.
    """

    def __init__(
        self,
        spec: QueueSpec,
        website: WebsiteClient,
        *,
        interval: float = 5.0,
        max_backoff: float = 60.0,
    ):
        self.spec = spec
        self.website = website
        self.interval = interval
        self.max_skip = max(0, int(max_backoff // interval) - 1)
        self.in_flight = False
        self.failures = 0
        self._skip_ticks = 0
        self.loop = tasks.loop(seconds=interval)(self.poll_once)

    def start(self) -> None:
        if not self.loop.is_running():
            self.loop.start()

    def stop(self) -> None:
        self.loop.cancel()

    def _record_failure(self, exc: WebsiteAPIError) -> None:
        if is_suppressed(exc.status, self.spec.optional):
            return
        self.failures += 1
        self._skip_ticks = min(2 ** (self.failures - 1) - 1, self.max_skip)
        log.error(
            "Polling %s failed (%s, attempt %d, next fetch in %d ticks): %s",
            self.spec.name,
            exc.status if exc.status is not None else "transport",
            self.failures,
            self._skip_ticks + 1,
            exc.message,
        )

    async def poll_once(self) -> int:
        """Run one fetch-and-dispatch cycle; returns how many items were handled."""
        if self.in_flight:
            log.warning("Polling %s: previous cycle still running, tick skipped", self.spec.name)
            return 0
        if self._skip_ticks > 0:
            self._skip_ticks -= 1
            return 0

        self.in_flight = True
        try:
            try:
                raw_items = await self.website.fetch_queue(self.spec.path, self.spec.key)
            except WebsiteAPIError as exc:
                self._record_failure(exc)
                return 0

            if self.failures:
                log.info("Polling %s recovered after %d failures", self.spec.name, self.failures)
            self.failures = 0

            handled = 0
            for raw in raw_items:
                try:
                    item = self.spec.parse(raw)
                except (MalformedWorkItem, TypeError, AttributeError) as exc:
                    log.warning("Polling %s: skipping malformed item %r (%s)", self.spec.name, raw, exc)
                    continue
                try:
                    await self.spec.handler(item)
                except Exception:
                    log.exception("Polling %s: handler failed for %r", self.spec.name, item)
                    continue
                handled += 1
            return handled
        finally:
            self.in_flight = False


def bridge_queues(
    tickets: TicketService,
    notifier: NotificationDispatcher,
    quotes: QuoteService,
    members: MemberReconciler,
) -> List[QueueSpec]:
    async def send_message(item: MessageRequest):
        return await notifier.send_channel_message(item.channel_id, item.message)

    async def send_dm(item: DirectMessageRequest):
        return await notifier.send_direct_message(item.user_id, item.message)

    async def notify_admins(item: AdminNotification):
        return await notifier.broadcast_to_admins(item.message)

    async def assign_role(item: RoleAssignmentRequest):
        return await members.assign_customer_role(item.user_id)

    return [
        QueueSpec("tickets", "/api/bot/create-ticket", "tickets",
                  TicketRequest.from_payload, tickets.create_ticket),
        QueueSpec("messages", "/api/bot/send-message", "messages",
                  MessageRequest.from_payload, send_message),
        QueueSpec("quote tickets", "/api/bot/create-quote-ticket", "tickets",
                  QuoteTicketRequest.from_payload, tickets.create_quote_ticket, optional=True),
        QueueSpec("quotes", "/api/bot/send-quote", "quotes",
                  QuoteNotification.from_payload, quotes.send_quote_ready_notification, optional=True),
        QueueSpec("dms", "/api/bot/send-dm", "dms",
                  DirectMessageRequest.from_payload, send_dm, optional=True),
        QueueSpec("admin notifications", "/api/bot/notify-admins", "notifications",
                  AdminNotification.from_payload, notify_admins, optional=True),
        QueueSpec("role assignments", "/api/bot/assign-role", "assignments",
                  RoleAssignmentRequest.from_payload, assign_role, optional=True),
    ]
