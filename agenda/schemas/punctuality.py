"""Schemas for the punctuality pipeline triggers and audit surface."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Shared
# =============================================================================

class ItemError(BaseModel):
    """Per-item failure captured at a batch loop boundary."""
    id: str
    error: str


# =============================================================================
# Monitor
# =============================================================================

class MonitorSnapshotInput(BaseModel):
    """Caller-supplied ETA/location observation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    appointment_id: UUID
    eta_minutes: int | None = Field(default=None, ge=0, le=1440)
    captured_at: datetime | None = None
    client_lat: float | None = Field(default=None, ge=-90, le=90)
    client_lng: float | None = Field(default=None, ge=-180, le=180)
    traffic_level: str | None = Field(default=None, max_length=20)
    provider: str | None = Field(default=None, max_length=40)
    raw_response: dict[str, Any] | None = None

    @property
    def has_client_coords(self) -> bool:
        return self.client_lat is not None and self.client_lng is not None


class MonitorRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: UUID | None = None
    appointment_id: UUID | None = None
    source: str = Field(default="monitor", min_length=1, max_length=40)
    window_before_min: int = Field(default=15, ge=0, le=120)
    window_after_min: int = Field(default=180, ge=5, le=1440)
    snapshots: list[MonitorSnapshotInput] = Field(default_factory=list)


class MonitorResult(BaseModel):
    ok: bool = True
    tenant_id: UUID
    processed: int = 0
    changed: int = 0  # committed status transitions
    updated: int = 0  # appointment rows written (status or numeric change)
    notifications_queued: int = 0  # in_app
    push_queued: int = 0
    whatsapp_queued: int = 0
    snapshots_ingested: int = 0
    refresh_snapshots: int = 0
    skipped_no_consent: int = 0
    reset_no_consent: int = 0
    skipped_unknown_appointment: int = 0
    errors: list[ItemError] = Field(default_factory=list)


# =============================================================================
# Dispatchers
# =============================================================================

class DispatchRequest(BaseModel):
    secret: str | None = None
    tenant_id: UUID | None = None
    limit: int = Field(default=50, ge=1, le=200)


class DispatchResult(BaseModel):
    ok: bool = True
    processed: int = 0
    sent: int = 0
    failed: int = 0
    provider: str
    errors: list[ItemError] = Field(default_factory=list)


# =============================================================================
# Scheduler
# =============================================================================

class SchedulerRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    secret: str | None = None
    tenant_id: UUID | None = None
    source: str = Field(default="scheduler", min_length=1, max_length=40)
    window_before_min: int = Field(default=15, ge=0, le=120)
    window_after_min: int = Field(default=180, ge=5, le=1440)
    max_tenants: int = Field(default=200, ge=1, le=500)
    dispatch_limit: int = Field(default=50, ge=1, le=200)


class SchedulerStep(BaseModel):
    ok: bool
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    result: MonitorResult | DispatchResult | None = None


class TenantSchedulerResult(BaseModel):
    tenant_id: UUID
    ok: bool
    monitor: SchedulerStep
    push_dispatcher: SchedulerStep
    whatsapp_dispatcher: SchedulerStep


class SchedulerResult(BaseModel):
    ok: bool = True
    triggered: int = 0
    changed_total: int = 0
    notifications_total: int = 0
    push_processed_total: int = 0
    push_sent_total: int = 0
    push_failed_total: int = 0
    whatsapp_processed_total: int = 0
    whatsapp_sent_total: int = 0
    whatsapp_failed_total: int = 0
    results: list[TenantSchedulerResult] = Field(default_factory=list)


# =============================================================================
# Retention
# =============================================================================

class RetentionRequest(BaseModel):
    secret: str | None = None
    tenant_id: UUID | None = None
    max_tenants: int = Field(default=200, ge=1, le=500)


class RetentionCounts(BaseModel):
    eta_snapshots_deleted: int = 0
    punctuality_events_deleted: int = 0
    notification_log_deleted: int = 0
    expired_consents_deleted: int = 0


class TenantRetentionResult(RetentionCounts):
    tenant_id: UUID
    errors: list[ItemError] = Field(default_factory=list)


class RetentionResult(BaseModel):
    ok: bool = True
    processed_tenants: int = 0
    totals: RetentionCounts = Field(default_factory=RetentionCounts)
    results: list[TenantRetentionResult] = Field(default_factory=list)


# =============================================================================
# Audit / investigation
# =============================================================================

class ChannelDeliveryMetrics(BaseModel):
    queued: int = 0
    sent: int = 0
    failed: int = 0
    delivery_rate: int = 0  # percent of resolved (sent + failed) that were sent


class InAppMetrics(BaseModel):
    queued: int = 0
    sent: int = 0
    read: int = 0


class SnapshotQualityMetrics(BaseModel):
    total: int = 0
    with_data: int = 0
    no_data: int = 0
    provider_failed: int = 0
    quality_rate: int = 0  # percent of snapshots carrying an ETA


class PunctualityMetrics(BaseModel):
    days: int
    since: datetime
    push: ChannelDeliveryMetrics
    whatsapp: ChannelDeliveryMetrics
    in_app: InAppMetrics
    events_by_status: dict[str, int]
    snapshots: SnapshotQualityMetrics


class AppointmentPunctualityRead(BaseModel):
    id: UUID
    professional_id: UUID
    client_id: UUID | None
    starts_at: datetime
    status: str
    punctuality_status: str
    punctuality_eta_min: int | None
    punctuality_predicted_delay_min: int | None
    punctuality_last_calculated_at: datetime | None

    model_config = {"from_attributes": True}


class EtaSnapshotRead(BaseModel):
    id: UUID
    captured_at: datetime
    eta_minutes: int | None
    minutes_to_start: int
    predicted_arrival_delay: int | None
    status: str
    traffic_level: str | None
    provider: str | None

    model_config = {"from_attributes": True}


class PunctualityEventRead(BaseModel):
    id: UUID
    old_status: str
    new_status: str
    eta_minutes: int | None
    minutes_to_start: int | None
    predicted_arrival_delay: int | None
    max_allowed_delay: int
    source: str
    occurred_at: datetime

    model_config = {"from_attributes": True}


class NotificationRead(BaseModel):
    id: UUID
    appointment_id: UUID
    channel: str
    type: str
    status: str
    provider_message_id: str | None
    payload: dict[str, Any]
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConsentRead(BaseModel):
    id: UUID
    appointment_id: UUID
    consent_status: str
    consent_text_version: str | None
    source_channel: str | None
    granted_at: datetime | None
    expires_at: datetime | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentInvestigation(BaseModel):
    appointment: AppointmentPunctualityRead
    snapshots: list[EtaSnapshotRead]
    events: list[PunctualityEventRead]
    notifications: list[NotificationRead]
    consents: list[ConsentRead]


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    total: int
    unread: int
