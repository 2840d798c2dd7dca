# ticket_lifecycle.py
# Close-with-confirmation flow for ticket channels.
from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import Dict, Optional, Set

import discord

from bot_config import Settings
from custom_ids import CancelClose, ConfirmClose
from tickets import TicketRegistry

log = logging.getLogger("ezb-bot.lifecycle")

CLOSE_PROMPT_TIMEOUT = 60


class LifecycleState(str, Enum):
    OPEN = "open"
    CLOSE_CONFIRM_PENDING = "close_confirm_pending"
    CLOSED = "closed"


class AuthorizationDenied(Exception):
    """The actor is not allowed to perform this ticket action."""


class InvalidTransition(Exception):
    def __init__(self, channel_id: int, state: LifecycleState, event: str):
        super().__init__(f"cannot {event} channel {channel_id} while {state.value}")
        self.channel_id = channel_id
        self.state = state
        self.event = event


class TicketLifecycle:
    """
    Explicit per-channel state table:

        OPEN --request_close--> CLOSE_CONFIRM_PENDING --confirm--> CLOSED
                                          |
                                          +--cancel / prompt expiry--> OPEN

    Channels never seen are OPEN. Only admins may request or confirm a close.
    Each close request gets its own prompt token; only the prompt holding the
    current token can expire the pending state.
    """

    def __init__(self, settings: Settings, registry: TicketRegistry):
        self.settings = settings
        self.registry = registry
        self.grace_seconds = settings.close_grace_seconds
        self._states: Dict[int, LifecycleState] = {}
        self._prompts: Dict[int, int] = {}
        self._next_prompt = itertools.count(1)
        self._deletions: Set[asyncio.Task] = set()

    def state(self, channel_id: int) -> LifecycleState:
        return self._states.get(channel_id, LifecycleState.OPEN)

    def _require_admin(self, actor_id: int) -> None:
        if not self.settings.is_admin(actor_id):
            raise AuthorizationDenied(f"user {actor_id} is not an admin")

    def _move(
        self, channel_id: int, event: str, expected: LifecycleState, target: LifecycleState
    ) -> None:
        current = self.state(channel_id)
        if current is not expected:
            raise InvalidTransition(channel_id, current, event)
        self._states[channel_id] = target
        log.debug("Channel %s: %s -> %s (%s)", channel_id, current.value, target.value, event)

    def request_close(self, channel_id: int, actor_id: int) -> int:
        """Enter CLOSE_CONFIRM_PENDING; returns the token of the new prompt."""
        self._require_admin(actor_id)
        self._move(
            channel_id, "request close", LifecycleState.OPEN, LifecycleState.CLOSE_CONFIRM_PENDING
        )
        token = next(self._next_prompt)
        self._prompts[channel_id] = token
        return token

    def confirm(self, channel_id: int, actor_id: int) -> None:
        self._require_admin(actor_id)
        self._move(
            channel_id, "confirm close", LifecycleState.CLOSE_CONFIRM_PENDING, LifecycleState.CLOSED
        )
        self._prompts.pop(channel_id, None)

    def cancel(self, channel_id: int) -> None:
        self._move(
            channel_id, "cancel close", LifecycleState.CLOSE_CONFIRM_PENDING, LifecycleState.OPEN
        )
        self._prompts.pop(channel_id, None)

    def expire(self, channel_id: int, token: int) -> bool:
        """Prompt ``token`` timed out; reopen the channel if it is still the pending one."""
        if self.state(channel_id) is not LifecycleState.CLOSE_CONFIRM_PENDING:
            return False
        if self._prompts.get(channel_id) != token:
            return False
        del self._prompts[channel_id]
        self._states[channel_id] = LifecycleState.OPEN
        return True

    def channel_deleted(self, channel_id: int) -> Optional[str]:
        """The channel disappeared, through us or any other path."""
        self._states[channel_id] = LifecycleState.CLOSED
        self._prompts.pop(channel_id, None)
        return self.registry.mark_closed(channel_id)

    def schedule_deletion(self, channel: discord.abc.GuildChannel) -> asyncio.Task:
        task = asyncio.create_task(self._delete_later(channel))
        self._deletions.add(task)
        task.add_done_callback(self._deletions.discard)
        return task

    async def _delete_later(self, channel: discord.abc.GuildChannel) -> None:
        await asyncio.sleep(self.grace_seconds)
        try:
            await channel.delete(reason="Ticket fermé par un admin")
        except discord.NotFound:
            pass
        except discord.HTTPException as exc:
            # still there: let an admin try again
            self._states[channel.id] = LifecycleState.OPEN
            log.warning("Could not delete ticket channel %s: %s", channel.id, exc)
            return
        order_id = self.channel_deleted(channel.id)
        log.info("Ticket channel %s deleted (order %s)", channel.id, order_id)

    def pending_deletions(self) -> int:
        return len(self._deletions)


class ClosePromptView(discord.ui.View):
    """Confirm / cancel buttons shown to the admin who asked to close."""

    def __init__(self, lifecycle: TicketLifecycle, channel_id: int, token: int):
        super().__init__(timeout=CLOSE_PROMPT_TIMEOUT)
        self.lifecycle = lifecycle
        self.channel_id = channel_id
        self.token = token
        self.add_item(
            discord.ui.Button(
                label="Confirmer",
                style=discord.ButtonStyle.danger,
                custom_id=ConfirmClose(channel_id).encode(),
            )
        )
        self.add_item(
            discord.ui.Button(
                label="Annuler",
                style=discord.ButtonStyle.secondary,
                custom_id=CancelClose(channel_id).encode(),
            )
        )

    async def on_timeout(self) -> None:
        if self.lifecycle.expire(self.channel_id, self.token):
            log.info("Close prompt for channel %s expired", self.channel_id)
