"""SQLAlchemy ORM models owned by the calendar (read, and punctuality fields written)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Uuid, func, true
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base
from agenda.db.enums import DEFAULT_APPOINTMENT_STATUS, DEFAULT_PUNCTUALITY_STATUS
from agenda.utils.clock import utcnow


class Professional(Base):
    """A professional who attends appointments. May be linked to a platform user."""

    __tablename__ = "professionals"
    __table_args__ = (Index("idx_professionals_tenant", "tenant_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (Index("idx_clients_tenant", "tenant_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Appointment(Base):
    """
    A booked appointment.

    The punctuality_* columns are derived state: only the monitor writes them.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_tenant_starts", "tenant_id", "starts_at"),
        Index("idx_appointments_status_starts", "status", "starts_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )

    # Punctuality (committed, debounced)
    punctuality_status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_PUNCTUALITY_STATUS.value,
        server_default=DEFAULT_PUNCTUALITY_STATUS.value,
        nullable=False,
    )
    punctuality_eta_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    punctuality_predicted_delay_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    punctuality_last_calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class ServiceLocation(Base):
    """
    Fixed place where appointments happen (ETA destination).

    professional_id NULL means tenant-wide.
    """

    __tablename__ = "service_locations"
    __table_args__ = (
        Index("idx_service_locations_lookup", "tenant_id", "professional_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=True
    )
    label: Mapped[str | None] = mapped_column(String(120), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
