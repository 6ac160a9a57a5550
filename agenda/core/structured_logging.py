"""Structured logging helpers (PII-safe).

Only identifiers go into log context. Client names, phone numbers,
coordinates and provider tokens never do.
"""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    tenant_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    notification_id: UUID | str | None = None,
    channel: str | None = None,
    provider: str | None = None,
    source: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if tenant_id:
        context["tenant_id"] = str(tenant_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if notification_id:
        context["notification_id"] = str(notification_id)
    if channel:
        context["channel"] = channel
    if provider:
        context["provider"] = provider
    if source:
        context["source"] = source
    if route:
        context["route"] = route
    return context
