"""Typed JSON payload stored on notification_log rows.

The payload is validated once when read from the database and dumped back
as JSON. Unknown keys written by older code are preserved.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


PUSH_ACTIONS = ["KEEP", "RESCHEDULE", "OPEN_AGENDA"]

_CHANNEL_KEYS = ("priority", "actions", "fallback_whatsapp_for_professional")
_DISPATCH_KEYS = {"push_dispatch", "whatsapp_dispatch", "dispatch_history"}


class DispatchRecord(BaseModel):
    """One dispatch attempt (push or WhatsApp)."""

    model_config = ConfigDict(extra="allow")

    channel: str
    provider: str
    outcome: Literal["sent", "failed"]
    attempted_at: datetime
    reason: str | None = None
    provider_message_id: str | None = None
    simulated: bool | None = None
    to: str | None = None
    message_preview: str | None = None
    error: str | None = None
    raw: dict[str, Any] | None = None


class NotificationPayload(BaseModel):
    """Context captured when the monitor queued the notification."""

    model_config = ConfigDict(extra="allow")

    appointment_id: UUID
    status: str
    eta_minutes: int | None = None
    predicted_arrival_delay: int | None = None
    max_allowed_delay: int | None = None
    source: str | None = None

    # push
    priority: Literal["high", "normal"] | None = None
    actions: list[str] | None = None

    # whatsapp
    fallback_whatsapp_for_professional: bool | None = None

    # dispatch diagnostics (latest per channel + full history)
    push_dispatch: DispatchRecord | None = None
    whatsapp_dispatch: DispatchRecord | None = None
    dispatch_history: list[DispatchRecord] = Field(default_factory=list)

    def record_dispatch(self, record: DispatchRecord) -> None:
        """Append an attempt without discarding earlier ones."""
        self.dispatch_history.append(record)
        if record.channel == "push":
            self.push_dispatch = record
        elif record.channel == "whatsapp":
            self.whatsapp_dispatch = record

    def to_json(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude=_DISPATCH_KEYS)
        for key in _CHANNEL_KEYS:
            if data.get(key) is None:
                data.pop(key, None)
        if self.push_dispatch:
            data["push_dispatch"] = self.push_dispatch.model_dump(mode="json", exclude_none=True)
        if self.whatsapp_dispatch:
            data["whatsapp_dispatch"] = self.whatsapp_dispatch.model_dump(mode="json", exclude_none=True)
        if self.dispatch_history:
            data["dispatch_history"] = [
                record.model_dump(mode="json", exclude_none=True) for record in self.dispatch_history
            ]
        return data
