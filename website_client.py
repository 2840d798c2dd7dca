"""
Website API client.

Every call to the shop's REST surface goes through this module: the queue
polls (``/api/bot/*``), the ticket-created callback and the quote acceptance.
All requests carry the shared bearer secret.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ContentTypeError

log = logging.getLogger("ezb-bot.website")


class WebsiteAPIError(Exception):
    """The website answered with a non-2xx status."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class WebsiteTransportError(WebsiteAPIError):
    """The request never got an HTTP answer (DNS, refused, timeout...)."""

    def __init__(self, message: str):
        super().__init__(None, message)


class WebsiteClient:
    """Bearer-authenticated client for the shop website."""

    def __init__(self, base_url: str, api_secret: str, *, timeout: float = 15.0):
        if not base_url:
            raise ValueError("website base url is required")
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_secret}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(
                method, url, headers=self.headers, json=payload
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except (ContentTypeError, ValueError):
                    data = None
                if not isinstance(data, dict):
                    data = {}
                if resp.status >= 400:
                    message = str(data.get("error") or resp.reason or f"HTTP {resp.status}")
                    raise WebsiteAPIError(resp.status, message)
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise WebsiteTransportError(str(exc) or exc.__class__.__name__) from exc

    async def fetch_queue(self, path: str, key: str) -> List[Dict[str, Any]]:
        """GET one pending-work queue and return its list under ``key``."""
        data = await self._request("GET", path)
        items = data.get(key) or []
        if not isinstance(items, list):
            raise WebsiteAPIError(200, f"{path}: '{key}' is not a list")
        return items

    async def notify_ticket_created(self, order_id: str, channel_id: int) -> None:
        await self._request(
            "POST",
            "/api/bot/ticket-created",
            {"orderId": order_id, "channelId": str(channel_id)},
        )

    async def accept_quote(self, order_id: str) -> str:
        """Accept a quote on behalf of its customer; returns the payment url."""
        data = await self._request("POST", f"/api/orders/{order_id}/accept-quote", {})
        payment_url = data.get("paymentUrl")
        if not payment_url:
            raise WebsiteAPIError(200, "no payment url returned")
        return str(payment_url)
