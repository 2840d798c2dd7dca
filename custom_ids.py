# custom_ids.py
# Button payloads: every ticket button carries "ezb:<action>:<argument>".
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

PREFIX = "ezb"
MAX_CUSTOM_ID_LENGTH = 100


class MalformedCustomId(ValueError):
    """A component id that looks like ours but cannot be decoded."""


@dataclass(frozen=True)
class CloseTicket:
    order_id: str
    action = "close"

    def encode(self) -> str:
        return _encode(self.action, self.order_id)


@dataclass(frozen=True)
class ConfirmClose:
    channel_id: int
    action = "confirm_close"

    def encode(self) -> str:
        return _encode(self.action, str(self.channel_id))


@dataclass(frozen=True)
class CancelClose:
    channel_id: int
    action = "cancel_close"

    def encode(self) -> str:
        return _encode(self.action, str(self.channel_id))


@dataclass(frozen=True)
class CreateQuote:
    order_id: str
    action = "create_quote"

    def encode(self) -> str:
        return _encode(self.action, self.order_id)


@dataclass(frozen=True)
class AcceptQuote:
    order_id: str
    action = "accept_quote"

    def encode(self) -> str:
        return _encode(self.action, self.order_id)


TicketAction = Union[CloseTicket, ConfirmClose, CancelClose, CreateQuote, AcceptQuote]

_ORDER_ACTIONS = {cls.action: cls for cls in (CloseTicket, CreateQuote, AcceptQuote)}
_CHANNEL_ACTIONS = {cls.action: cls for cls in (ConfirmClose, CancelClose)}


def _encode(action: str, argument: str) -> str:
    if not argument:
        raise ValueError(f"{action}: empty argument")
    custom_id = f"{PREFIX}:{action}:{argument}"
    if len(custom_id) > MAX_CUSTOM_ID_LENGTH:
        raise ValueError(f"custom id too long for {action}: {len(custom_id)} chars")
    return custom_id


def is_ticket_custom_id(custom_id: str) -> bool:
    return bool(custom_id) and custom_id.startswith(PREFIX + ":")


def decode(custom_id: str) -> TicketAction:
    """Turn a component custom id back into its action.

    Raises MalformedCustomId for anything that is not a well-formed
    ``ezb:<action>:<argument>`` id.
    """
    parts = (custom_id or "").split(":", 2)
    if len(parts) != 3 or parts[0] != PREFIX:
        raise MalformedCustomId(f"not a ticket button id: {custom_id!r}")
    _, action, argument = parts
    if not argument:
        raise MalformedCustomId(f"missing argument in {custom_id!r}")

    if action in _ORDER_ACTIONS:
        return _ORDER_ACTIONS[action](argument)
    if action in _CHANNEL_ACTIONS:
        try:
            channel_id = int(argument)
        except ValueError:
            raise MalformedCustomId(f"bad channel id in {custom_id!r}") from None
        return _CHANNEL_ACTIONS[action](channel_id)
    raise MalformedCustomId(f"unknown action {action!r}")
