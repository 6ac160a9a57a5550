"""Push delivery provider (Expo push service)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


@dataclass
class PushSendResult:
    ok: bool
    provider_message_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class ExpoPushProvider:
    """Sends one notification to one Expo push token. Never raises on delivery failure."""

    name = "expo"

    def __init__(
        self,
        access_token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    def supports(self, token_provider: str) -> bool:
        return token_provider == self.name

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any],
        priority: str,
    ) -> PushSendResult:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    EXPO_PUSH_URL,
                    headers=headers,
                    json={
                        "to": token,
                        "title": title,
                        "body": body,
                        "sound": "default",
                        "priority": priority,
                        "data": data,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("Expo push request failed: %s", exc.__class__.__name__)
            return PushSendResult(ok=False, error=exc.__class__.__name__)

        try:
            result = response.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {"body": result}

        if not response.is_success:
            return PushSendResult(ok=False, raw=result, error=f"Expo send failed ({response.status_code})")

        tickets = result.get("data")
        if isinstance(tickets, dict):
            tickets = [tickets]
        first = tickets[0] if isinstance(tickets, list) and tickets and isinstance(tickets[0], dict) else {}
        if first.get("status", "ok") != "ok":
            return PushSendResult(ok=False, raw=result, error=str(first.get("message") or "ticket_error"))

        return PushSendResult(ok=True, provider_message_id=first.get("id"), raw=result)
