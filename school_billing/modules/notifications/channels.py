"""Outbound delivery channels for invoice notifications."""

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class PushSender(Protocol):
    """Push notification transport (Web Push, OneSignal...) supplied by the host app."""

    async def send(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> None: ...


class WhatsAppSender(Protocol):
    async def send(self, phone: str, message: str) -> None: ...


class HttpWhatsAppSender:
    """Sends WhatsApp messages through an HTTP gateway (``POST {to, message}``)."""

    def __init__(self, api_url: str, api_token: str = "", timeout: float = 10.0):
        self.api_url = api_url
        self.api_token = api_token
        self.timeout = timeout

    async def send(self, phone: str, message: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.api_url,
                    json={"to": phone, "message": message},
                    headers=headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("WhatsApp gateway rejected message to %s: %s", phone, e)
            raise
        except httpx.TimeoutException:
            logger.warning("WhatsApp gateway timed out sending to %s", phone)
            raise
