"""Pydantic schemas for API request/response models."""

from agenda.schemas.auth import TokenPayload, UserSession
from agenda.schemas.notification_payload import DispatchRecord, NotificationPayload
from agenda.schemas.punctuality import (
    AppointmentInvestigation,
    ConsentRead,
    DispatchRequest,
    DispatchResult,
    ItemError,
    MonitorRequest,
    MonitorResult,
    MonitorSnapshotInput,
    NotificationListResponse,
    NotificationRead,
    PunctualityMetrics,
    RetentionRequest,
    RetentionResult,
    SchedulerRequest,
    SchedulerResult,
)

__all__ = [
    "AppointmentInvestigation",
    "ConsentRead",
    "DispatchRecord",
    "DispatchRequest",
    "DispatchResult",
    "ItemError",
    "MonitorRequest",
    "MonitorResult",
    "MonitorSnapshotInput",
    "NotificationListResponse",
    "NotificationPayload",
    "NotificationRead",
    "PunctualityMetrics",
    "RetentionRequest",
    "RetentionResult",
    "SchedulerRequest",
    "SchedulerResult",
    "TokenPayload",
    "UserSession",
]
