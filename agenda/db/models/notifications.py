"""SQLAlchemy ORM models for notifications and delivery targets."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid, func, true
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base
from agenda.db.enums import NotificationStatus
from agenda.db.types import JsonDocument
from agenda.utils.clock import utcnow


class NotificationLog(Base):
    """
    One notification per (appointment, channel, type) attempt.

    dedupe_key is unique per dedup bucket so concurrent monitor passes
    cannot both insert the same notification. The payload accumulates
    dispatch diagnostics across attempts.
    """

    __tablename__ = "notification_log"
    __table_args__ = (
        Index("idx_notification_log_dispatch", "channel", "status", "created_at"),
        Index(
            "idx_notification_log_dedupe_window",
            "tenant_id", "appointment_id", "channel", "type", "created_at",
        ),
        Index("idx_notification_log_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=NotificationStatus.QUEUED.value, nullable=False
    )
    payload: Mapped[dict] = mapped_column(JsonDocument, default=dict, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dedupe_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class DevicePushToken(Base):
    """Registered mobile device for push delivery."""

    __tablename__ = "device_push_tokens"
    __table_args__ = (
        Index("idx_device_push_tokens_user", "tenant_id", "user_id", "active", "last_seen_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(String(20), default="expo", nullable=False)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)  # "ios", "android"
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class WhatsappChannelSetting(Base):
    """
    WhatsApp Cloud API sending number.

    professional_id NULL means tenant-wide.
    """

    __tablename__ = "whatsapp_channel_settings"
    __table_args__ = (
        Index("idx_whatsapp_channel_settings_lookup", "tenant_id", "professional_id", "active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=True
    )
    phone_number_id: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
