"""Consent gate for live-location monitoring, plus consent trail operations."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.core.structured_logging import build_log_context
from agenda.db.enums import ConsentSourceChannel, ConsentStatus
from agenda.db.models import ClientLocationConsent
from agenda.utils.clock import ensure_aware, utcnow

logger = logging.getLogger(__name__)


class ConsentNotFoundError(LookupError):
    pass


def get_latest_consent(
    db: Session, tenant_id: UUID, appointment_id: UUID
) -> ClientLocationConsent | None:
    """Most recently updated consent record (the authoritative one)."""
    return (
        db.query(ClientLocationConsent)
        .filter(
            ClientLocationConsent.tenant_id == tenant_id,
            ClientLocationConsent.appointment_id == appointment_id,
        )
        .order_by(ClientLocationConsent.updated_at.desc(), ClientLocationConsent.created_at.desc())
        .first()
    )


def is_consent_active(consent: ClientLocationConsent | None, now: datetime) -> bool:
    """Granted and not expired as of now."""
    if consent is None or consent.consent_status != ConsentStatus.GRANTED.value:
        return False
    return consent.expires_at is None or ensure_aware(consent.expires_at) > now


class ConsentGate:
    """
    Pass-scoped consent lookups.

    Memoizes per appointment for one orchestration pass. Create a new gate
    for every pass; never share one across passes.
    """

    def __init__(self, db: Session, tenant_id: UUID, now: datetime):
        self.db = db
        self.tenant_id = tenant_id
        self.now = now
        self._cache: dict[UUID, bool] = {}

    def has_active_consent(self, appointment_id: UUID) -> bool:
        cached = self._cache.get(appointment_id)
        if cached is not None:
            return cached
        allowed = is_consent_active(
            get_latest_consent(self.db, self.tenant_id, appointment_id), self.now
        )
        self._cache[appointment_id] = allowed
        return allowed


def list_consents(
    db: Session, tenant_id: UUID, appointment_id: UUID, limit: int | None = None
) -> list[ClientLocationConsent]:
    query = (
        db.query(ClientLocationConsent)
        .filter(
            ClientLocationConsent.tenant_id == tenant_id,
            ClientLocationConsent.appointment_id == appointment_id,
        )
        .order_by(ClientLocationConsent.updated_at.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def revoke_consent(
    db: Session, tenant_id: UUID, consent_id: UUID, now: datetime | None = None
) -> ClientLocationConsent:
    """
    Revoke a consent from the dashboard.

    Tracked punctuality state is blanked by the next monitor pass.
    """
    consent = (
        db.query(ClientLocationConsent)
        .filter(
            ClientLocationConsent.tenant_id == tenant_id,
            ClientLocationConsent.id == consent_id,
        )
        .first()
    )
    if not consent:
        raise ConsentNotFoundError(str(consent_id))

    now = now or utcnow()
    consent.consent_status = ConsentStatus.REVOKED.value
    consent.expires_at = now
    consent.source_channel = ConsentSourceChannel.WEB_DASHBOARD.value
    consent.updated_at = now
    db.commit()
    db.refresh(consent)

    logger.info(
        "Location consent revoked",
        extra=build_log_context(tenant_id=tenant_id, appointment_id=consent.appointment_id),
    )
    return consent


# =============================================================================
# CSV export
# =============================================================================

CONSENT_CSV_COLUMNS = [
    "appointment_id",
    "client",
    "consent_status",
    "consent_text_version",
    "source_channel",
    "granted_at",
    "expires_at",
    "updated_at",
    "consent_id",
]

CSV_DANGEROUS_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _serialize_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat()
    return str(value)


def _csv_safe(value: object) -> str:
    text = _serialize_value(value)
    if text and text.startswith(CSV_DANGEROUS_PREFIXES):
        return f"'{text}"
    return text


def export_consents_csv(
    consents: list[ClientLocationConsent], client_name: str | None
) -> str:
    """Consent trail as ;-separated CSV with a UTF-8 BOM (spreadsheet friendly)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    writer.writerow(CONSENT_CSV_COLUMNS)
    for consent in consents:
        writer.writerow(
            [
                _csv_safe(consent.appointment_id),
                _csv_safe(client_name),
                _csv_safe(consent.consent_status),
                _csv_safe(consent.consent_text_version),
                _csv_safe(consent.source_channel),
                _csv_safe(consent.granted_at),
                _csv_safe(consent.expires_at),
                _csv_safe(consent.updated_at),
                _csv_safe(consent.id),
            ]
        )
    return "\ufeff" + buffer.getvalue()
