# work_items.py
# Payloads handed out by the website's /api/bot/* queues.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


class MalformedWorkItem(ValueError):
    """A queue item is missing a field or carries an unusable value."""


def _text(payload: Mapping[str, Any], key: str, *, required: bool = True) -> Optional[str]:
    value = payload.get(key)
    if value is None or str(value).strip() == "":
        if required:
            raise MalformedWorkItem(f"missing '{key}'")
        return None
    return str(value)


def _snowflake(payload: Mapping[str, Any], key: str) -> int:
    raw = _text(payload, key)
    try:
        return int(raw)
    except ValueError:
        raise MalformedWorkItem(f"'{key}' is not a discord id: {raw!r}") from None


@dataclass(frozen=True)
class TicketRequest:
    order_id: str
    user_id: int
    username: str
    service_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TicketRequest":
        return cls(
            order_id=_text(payload, "orderId"),
            user_id=_snowflake(payload, "userId"),
            username=_text(payload, "username", required=False) or "client",
            service_id=_text(payload, "serviceId", required=False),
        )


@dataclass(frozen=True)
class QuoteTicketRequest:
    order_id: str
    discord_id: int
    username: str
    service_type: Optional[str] = None
    description: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QuoteTicketRequest":
        return cls(
            order_id=_text(payload, "orderId"),
            discord_id=_snowflake(payload, "discordId"),
            username=_text(payload, "username", required=False) or "client",
            service_type=_text(payload, "serviceType", required=False),
            description=_text(payload, "description", required=False) or "",
        )


@dataclass(frozen=True)
class MessageRequest:
    channel_id: int
    message: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MessageRequest":
        return cls(
            channel_id=_snowflake(payload, "channelId"),
            message=_text(payload, "message"),
        )


@dataclass(frozen=True)
class QuoteNotification:
    channel_id: int
    user_id: int
    product_name: str
    price: str
    description: str
    order_id: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QuoteNotification":
        return cls(
            channel_id=_snowflake(payload, "channelId"),
            user_id=_snowflake(payload, "userId"),
            product_name=_text(payload, "productName"),
            price=_text(payload, "price"),
            description=_text(payload, "description", required=False) or "",
            order_id=_text(payload, "orderId"),
        )


@dataclass(frozen=True)
class DirectMessageRequest:
    user_id: int
    message: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DirectMessageRequest":
        return cls(user_id=_snowflake(payload, "userId"), message=_text(payload, "message"))


@dataclass(frozen=True)
class AdminNotification:
    message: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AdminNotification":
        return cls(message=_text(payload, "message"))


@dataclass(frozen=True)
class RoleAssignmentRequest:
    user_id: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RoleAssignmentRequest":
        return cls(user_id=_snowflake(payload, "userId"))
