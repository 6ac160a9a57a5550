"""WhatsApp delivery provider (Meta WhatsApp Cloud API)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"


@dataclass
class WhatsappSendResult:
    message_id: str | None = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None


class MetaWhatsappProvider:
    """Sends a text message from a business phone number. Never raises on delivery failure."""

    name = "meta"

    def __init__(
        self,
        access_token: str,
        api_version: str = "v22.0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    async def send_text(self, to: str, message: str, phone_number_id: str) -> WhatsappSendResult:
        if not self.access_token or not phone_number_id:
            return WhatsappSendResult(error="Missing WHATSAPP_ACCESS_TOKEN or phone_number_id")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{GRAPH_API_BASE_URL}/{self.api_version}/{phone_number_id}/messages",
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "messaging_product": "whatsapp",
                        "to": to,
                        "type": "text",
                        "text": {"body": message},
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("WhatsApp send request failed: %s", exc.__class__.__name__)
            return WhatsappSendResult(error=f"Meta request failed ({exc.__class__.__name__})")

        try:
            raw = response.json()
        except ValueError:
            raw = {}
        if not isinstance(raw, dict):
            raw = {"body": raw}

        if not response.is_success:
            return WhatsappSendResult(error=f"Meta send failed ({response.status_code})", raw=raw)

        messages = raw.get("messages")
        first = messages[0] if isinstance(messages, list) and messages and isinstance(messages[0], dict) else {}
        return WhatsappSendResult(message_id=first.get("id"), raw=raw)
