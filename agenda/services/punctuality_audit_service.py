"""
Punctuality audit service - metrics, per-appointment investigation, consent trail.

Read side of the pipeline for tenant admins.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from agenda.db.enums import (
    NotificationChannel,
    NotificationStatus,
    PUNCTUALITY_NOTIFICATION_TYPES,
)
from agenda.db.models import (
    Appointment,
    Client,
    EtaSnapshot,
    NotificationLog,
    PunctualityEvent,
)
from agenda.schemas.punctuality import (
    AppointmentInvestigation,
    AppointmentPunctualityRead,
    ChannelDeliveryMetrics,
    ConsentRead,
    EtaSnapshotRead,
    InAppMetrics,
    NotificationRead,
    PunctualityEventRead,
    PunctualityMetrics,
    SnapshotQualityMetrics,
)
from agenda.services import consent_service
from agenda.utils.clock import utcnow

INVESTIGATION_SNAPSHOT_LIMIT = 15
INVESTIGATION_EVENT_LIMIT = 15
INVESTIGATION_NOTIFICATION_LIMIT = 20
INVESTIGATION_CONSENT_LIMIT = 20


class AppointmentNotFoundError(LookupError):
    """Appointment does not exist in the tenant."""


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round(part * 100 / whole)


def _channel_metrics(counts: dict[str, int]) -> ChannelDeliveryMetrics:
    sent = counts.get(NotificationStatus.SENT.value, 0)
    failed = counts.get(NotificationStatus.FAILED.value, 0)
    return ChannelDeliveryMetrics(
        queued=counts.get(NotificationStatus.QUEUED.value, 0),
        sent=sent,
        failed=failed,
        delivery_rate=_percent(sent, sent + failed),
    )


def get_metrics(
    db: Session, tenant_id: UUID, days: int = 7, now: datetime | None = None
) -> PunctualityMetrics:
    """Delivery, event and ETA-quality counters over the last `days` days."""
    now = now or utcnow()
    since = now - timedelta(days=days)

    notification_rows = (
        db.query(NotificationLog.channel, NotificationLog.status, func.count(NotificationLog.id))
        .filter(
            NotificationLog.tenant_id == tenant_id,
            NotificationLog.type.in_(PUNCTUALITY_NOTIFICATION_TYPES),
            NotificationLog.created_at >= since,
        )
        .group_by(NotificationLog.channel, NotificationLog.status)
        .all()
    )
    by_channel: dict[str, dict[str, int]] = {}
    for channel, status, count in notification_rows:
        by_channel.setdefault(channel, {})[status] = count

    in_app_counts = by_channel.get(NotificationChannel.IN_APP.value, {})
    in_app = InAppMetrics(
        queued=in_app_counts.get(NotificationStatus.QUEUED.value, 0),
        sent=in_app_counts.get(NotificationStatus.SENT.value, 0),
        read=in_app_counts.get(NotificationStatus.READ.value, 0),
    )

    event_rows = (
        db.query(PunctualityEvent.new_status, func.count(PunctualityEvent.id))
        .filter(
            PunctualityEvent.tenant_id == tenant_id,
            PunctualityEvent.occurred_at >= since,
        )
        .group_by(PunctualityEvent.new_status)
        .all()
    )

    snapshot_filter = (
        EtaSnapshot.tenant_id == tenant_id,
        EtaSnapshot.captured_at >= since,
    )
    total = db.query(func.count(EtaSnapshot.id)).filter(*snapshot_filter).scalar() or 0
    with_data = (
        db.query(func.count(EtaSnapshot.id))
        .filter(*snapshot_filter, EtaSnapshot.eta_minutes.isnot(None))
        .scalar()
        or 0
    )
    provider_failed = (
        db.query(func.count(EtaSnapshot.id))
        .filter(*snapshot_filter, EtaSnapshot.provider.like("%\\_failed", escape="\\"))
        .scalar()
        or 0
    )

    return PunctualityMetrics(
        days=days,
        since=since,
        push=_channel_metrics(by_channel.get(NotificationChannel.PUSH.value, {})),
        whatsapp=_channel_metrics(by_channel.get(NotificationChannel.WHATSAPP.value, {})),
        in_app=in_app,
        events_by_status={status: count for status, count in event_rows},
        snapshots=SnapshotQualityMetrics(
            total=total,
            with_data=with_data,
            no_data=total - with_data,
            provider_failed=provider_failed,
            quality_rate=_percent(with_data, total),
        ),
    )


def get_appointment(db: Session, tenant_id: UUID, appointment_id: UUID) -> Appointment:
    appointment = (
        db.query(Appointment)
        .filter(Appointment.tenant_id == tenant_id, Appointment.id == appointment_id)
        .first()
    )
    if not appointment:
        raise AppointmentNotFoundError(str(appointment_id))
    return appointment


def investigate_appointment(
    db: Session, tenant_id: UUID, appointment_id: UUID
) -> AppointmentInvestigation:
    """Committed state plus the most recent snapshots, events, notifications and consents."""
    appointment = get_appointment(db, tenant_id, appointment_id)

    snapshots = (
        db.query(EtaSnapshot)
        .filter(EtaSnapshot.tenant_id == tenant_id, EtaSnapshot.appointment_id == appointment_id)
        .order_by(EtaSnapshot.captured_at.desc())
        .limit(INVESTIGATION_SNAPSHOT_LIMIT)
        .all()
    )
    events = (
        db.query(PunctualityEvent)
        .filter(
            PunctualityEvent.tenant_id == tenant_id,
            PunctualityEvent.appointment_id == appointment_id,
        )
        .order_by(PunctualityEvent.occurred_at.desc())
        .limit(INVESTIGATION_EVENT_LIMIT)
        .all()
    )
    notifications = (
        db.query(NotificationLog)
        .filter(
            NotificationLog.tenant_id == tenant_id,
            NotificationLog.appointment_id == appointment_id,
            NotificationLog.type.in_(PUNCTUALITY_NOTIFICATION_TYPES),
        )
        .order_by(NotificationLog.created_at.desc())
        .limit(INVESTIGATION_NOTIFICATION_LIMIT)
        .all()
    )
    consents = consent_service.list_consents(
        db, tenant_id, appointment_id, limit=INVESTIGATION_CONSENT_LIMIT
    )

    return AppointmentInvestigation(
        appointment=AppointmentPunctualityRead.model_validate(appointment),
        snapshots=[EtaSnapshotRead.model_validate(s) for s in snapshots],
        events=[PunctualityEventRead.model_validate(e) for e in events],
        notifications=[NotificationRead.model_validate(n) for n in notifications],
        consents=[ConsentRead.model_validate(c) for c in consents],
    )


def revoke_consent(db: Session, tenant_id: UUID, consent_id: UUID) -> ConsentRead:
    consent = consent_service.revoke_consent(db, tenant_id, consent_id)
    return ConsentRead.model_validate(consent)


def export_consent_trail(db: Session, tenant_id: UUID, appointment_id: UUID) -> str:
    """CSV of every consent record for the appointment, newest first."""
    appointment = get_appointment(db, tenant_id, appointment_id)
    client_name = None
    if appointment.client_id:
        client = db.get(Client, appointment.client_id)
        client_name = client.full_name if client else None
    consents = consent_service.list_consents(db, tenant_id, appointment_id)
    return consent_service.export_consents_csv(consents, client_name)
