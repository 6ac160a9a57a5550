"""SQLAlchemy ORM models for punctuality monitoring."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base
from agenda.db.types import JsonDocument
from agenda.utils.clock import utcnow


class DelayPolicy(Base):
    """
    Maximum allowed arrival delay and escalation flags.

    professional_id NULL means tenant-wide default.
    """

    __tablename__ = "delay_policies"
    __table_args__ = (
        UniqueConstraint("tenant_id", "professional_id", name="uq_delay_policies_scope"),
        CheckConstraint("max_allowed_delay_min >= 0", name="ck_delay_policies_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=True
    )
    max_allowed_delay_min: Mapped[int] = mapped_column(
        Integer, default=10, server_default="10", nullable=False
    )
    fallback_whatsapp_for_professional: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class ClientLocationConsent(Base):
    """
    Client permission to use live location for an appointment.

    Only the most recently updated row per appointment is authoritative.
    """

    __tablename__ = "client_location_consents"
    __table_args__ = (
        Index("idx_consents_appointment_updated", "tenant_id", "appointment_id", "updated_at"),
        Index("idx_consents_expires", "tenant_id", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    consent_status: Mapped[str] = mapped_column(String(20), nullable=False)
    consent_text_version: Mapped[str | None] = mapped_column(String(40), nullable=True)
    source_channel: Mapped[str | None] = mapped_column(String(40), nullable=True)
    granted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class EtaSnapshot(Base):
    """
    One ETA observation (append-only).

    status is the point-in-time classification, not the committed one.
    eta_minutes NULL means no data.
    """

    __tablename__ = "appointment_eta_snapshots"
    __table_args__ = (
        Index("idx_eta_snapshots_appointment_captured", "tenant_id", "appointment_id", "captured_at"),
        Index("idx_eta_snapshots_tenant_captured", "tenant_id", "captured_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    captured_at: Mapped[datetime] = mapped_column(nullable=False)
    eta_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    minutes_to_start: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_arrival_delay: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    client_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    client_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    traffic_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(60), nullable=True)
    raw_response: Mapped[dict] = mapped_column(JsonDocument, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class PunctualityEvent(Base):
    """Committed status transition (append-only audit trail)."""

    __tablename__ = "punctuality_events"
    __table_args__ = (
        Index("idx_punctuality_events_appointment", "tenant_id", "appointment_id", "occurred_at"),
        Index("idx_punctuality_events_tenant_occurred", "tenant_id", "occurred_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    eta_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    minutes_to_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    predicted_arrival_delay: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_allowed_delay: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(40), nullable=False)
    payload: Mapped[dict] = mapped_column(JsonDocument, default=dict, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class PunctualityRetentionPolicy(Base):
    """Per-tenant retention windows (days) for punctuality data."""

    __tablename__ = "punctuality_retention_policies"
    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_punctuality_retention_tenant"),
        CheckConstraint(
            "keep_eta_snapshots_days >= 1 AND keep_punctuality_events_days >= 1 "
            "AND keep_notification_log_days >= 1 AND delete_expired_consents_after_days >= 0",
            name="ck_punctuality_retention_days",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    keep_eta_snapshots_days: Mapped[int] = mapped_column(
        Integer, default=30, server_default="30", nullable=False
    )
    keep_punctuality_events_days: Mapped[int] = mapped_column(
        Integer, default=180, server_default="180", nullable=False
    )
    keep_notification_log_days: Mapped[int] = mapped_column(
        Integer, default=90, server_default="90", nullable=False
    )
    delete_expired_consents_after_days: Mapped[int] = mapped_column(
        Integer, default=30, server_default="30", nullable=False
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
