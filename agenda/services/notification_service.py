"""
Notification Service - punctuality notification log.

Queues notifications with time-windowed dedup, loads/stores typed payloads,
and serves the in-app inbox.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agenda.core.structured_logging import build_log_context
from agenda.db.enums import (
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    PUNCTUALITY_NOTIFICATION_TYPES,
)
from agenda.db.models import Appointment, NotificationLog, Professional
from agenda.schemas.notification_payload import NotificationPayload
from agenda.utils.clock import utcnow

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_MINUTES = 10

_STATUS_FOR_TYPE = {
    NotificationType.PUNCTUALITY_ON_TIME.value: "on_time",
    NotificationType.PUNCTUALITY_LATE_OK.value: "late_ok",
    NotificationType.PUNCTUALITY_LATE_CRITICAL.value: "late_critical",
}


# =============================================================================
# Queueing with dedup
# =============================================================================


def build_dedupe_key(
    appointment_id: UUID,
    channel: NotificationChannel,
    notification_type: NotificationType,
    now: datetime,
    window_minutes: int,
) -> str:
    """
    Stable key for one dedup bucket.

    Backed by a unique index. Passes straddling a bucket boundary get
    different keys; lock_dedup_scope covers those.
    """
    bucket = int(now.timestamp()) // (max(1, window_minutes) * 60)
    normalized = f"{appointment_id}:{channel.value}:{notification_type.value}:{bucket}"
    return hashlib.sha256(normalized.encode()).hexdigest()


def lock_dedup_scope(
    db: Session,
    appointment_id: UUID,
    channel: NotificationChannel,
    notification_type: NotificationType,
) -> None:
    """
    Serialize queueing for one (appointment, channel, type) until commit/rollback.

    PostgreSQL takes a transaction-scoped advisory lock; other backends lock
    the appointment row.
    """
    if db.get_bind().dialect.name == "postgresql":
        key = f"notification:{appointment_id}:{channel.value}:{notification_type.value}"
        db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
        return
    db.query(Appointment.id).filter(Appointment.id == appointment_id).with_for_update().first()


def has_recent_notification(
    db: Session,
    tenant_id: UUID,
    appointment_id: UUID,
    channel: NotificationChannel,
    notification_type: NotificationType,
    since: datetime,
) -> bool:
    """Any row (any status) created since the window start."""
    return db.query(NotificationLog.id).filter(
        NotificationLog.tenant_id == tenant_id,
        NotificationLog.appointment_id == appointment_id,
        NotificationLog.channel == channel.value,
        NotificationLog.type == notification_type.value,
        NotificationLog.created_at >= since,
    ).first() is not None


def queue_notification(
    db: Session,
    *,
    tenant_id: UUID,
    appointment_id: UUID,
    channel: NotificationChannel,
    notification_type: NotificationType,
    payload: NotificationPayload,
    now: datetime | None = None,
    dedup_minutes: int = DEFAULT_DEDUP_MINUTES,
) -> Optional[NotificationLog]:
    """
    Queue a notification unless one of the same kind exists in the window.

    Commits on success. Returns None when deduplicated.
    """
    now = now or utcnow()
    window_start = now - timedelta(minutes=dedup_minutes)
    # Check and insert share the locked transaction
    lock_dedup_scope(db, appointment_id, channel, notification_type)
    if has_recent_notification(db, tenant_id, appointment_id, channel, notification_type, window_start):
        return None

    notification = NotificationLog(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        channel=channel.value,
        type=notification_type.value,
        status=NotificationStatus.QUEUED.value,
        payload=payload.to_json(),
        dedupe_key=build_dedupe_key(appointment_id, channel, notification_type, now, dedup_minutes),
        created_at=now,
        updated_at=now,
    )
    db.add(notification)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent pass won the dedupe_key
        db.rollback()
        logger.info(
            "Notification already queued by a concurrent pass",
            extra=build_log_context(
                tenant_id=tenant_id, appointment_id=appointment_id, channel=channel.value
            ),
        )
        return None
    return notification


# =============================================================================
# Payload helpers
# =============================================================================


def load_payload(notification: NotificationLog) -> NotificationPayload:
    """Validate the stored JSON payload into its typed form."""
    data = dict(notification.payload or {})
    data.setdefault("appointment_id", str(notification.appointment_id))
    data.setdefault("status", _STATUS_FOR_TYPE.get(notification.type, "no_data"))
    return NotificationPayload.model_validate(data)


def store_payload(notification: NotificationLog, payload: NotificationPayload) -> None:
    # Reassign (not mutate) so the JSON column is flagged dirty
    notification.payload = payload.to_json()


def list_queued(
    db: Session,
    channel: NotificationChannel,
    limit: int,
    tenant_id: UUID | None = None,
) -> list[NotificationLog]:
    """Queued punctuality notifications for a channel, oldest first."""
    query = db.query(NotificationLog).filter(
        NotificationLog.channel == channel.value,
        NotificationLog.status == NotificationStatus.QUEUED.value,
        NotificationLog.type.in_(PUNCTUALITY_NOTIFICATION_TYPES),
    )
    if tenant_id:
        query = query.filter(NotificationLog.tenant_id == tenant_id)
    return query.order_by(NotificationLog.created_at.asc()).limit(limit).all()


# =============================================================================
# In-app inbox
# =============================================================================


def _in_app_query(db: Session, tenant_id: UUID, professional_user_id: UUID | None):
    query = db.query(NotificationLog).filter(
        NotificationLog.tenant_id == tenant_id,
        NotificationLog.channel == NotificationChannel.IN_APP.value,
        NotificationLog.type.in_(PUNCTUALITY_NOTIFICATION_TYPES),
    )
    if professional_user_id:
        query = (
            query.join(Appointment, Appointment.id == NotificationLog.appointment_id)
            .join(Professional, Professional.id == Appointment.professional_id)
            .filter(Professional.user_id == professional_user_id)
        )
    return query


def get_in_app_notifications(
    db: Session,
    tenant_id: UUID,
    professional_user_id: UUID | None = None,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> list[NotificationLog]:
    """In-app notifications, newest first. professional_user_id narrows to own appointments."""
    query = _in_app_query(db, tenant_id, professional_user_id)
    if unread_only:
        query = query.filter(NotificationLog.read_at.is_(None))
    return query.order_by(NotificationLog.created_at.desc()).offset(offset).limit(limit).all()


def count_in_app_notifications(
    db: Session,
    tenant_id: UUID,
    professional_user_id: UUID | None = None,
    unread_only: bool = False,
) -> int:
    query = _in_app_query(db, tenant_id, professional_user_id)
    if unread_only:
        query = query.filter(NotificationLog.read_at.is_(None))
    return query.count()


def mark_read(
    db: Session,
    notification_id: UUID,
    tenant_id: UUID,
    professional_user_id: UUID | None = None,
) -> Optional[NotificationLog]:
    """Mark an in-app notification as read (scoped by tenant for isolation)."""
    notification = _in_app_query(db, tenant_id, professional_user_id).filter(
        NotificationLog.id == notification_id,
    ).first()

    if notification and not notification.read_at:
        now = utcnow()
        notification.read_at = now
        notification.status = NotificationStatus.READ.value
        notification.updated_at = now
        db.commit()
        db.refresh(notification)

    return notification
