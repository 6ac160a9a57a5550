"""Enum definitions for application constants."""

from agenda.db.enums.appointments import (
    AppointmentStatus,
    DEFAULT_APPOINTMENT_STATUS,
    MONITORED_APPOINTMENT_STATUSES,
)
from agenda.db.enums.auth import Role
from agenda.db.enums.notifications import (
    DispatchFailureReason,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    PUNCTUALITY_NOTIFICATION_TYPES,
    PushProviderName,
    WhatsappProviderName,
)
from agenda.db.enums.punctuality import (
    ConsentSourceChannel,
    ConsentStatus,
    DEFAULT_PUNCTUALITY_STATUS,
    EtaProviderName,
    PunctualityStatus,
    TrafficLevel,
)

__all__ = [
    "AppointmentStatus",
    "ConsentSourceChannel",
    "ConsentStatus",
    "DEFAULT_APPOINTMENT_STATUS",
    "DEFAULT_PUNCTUALITY_STATUS",
    "DispatchFailureReason",
    "EtaProviderName",
    "MONITORED_APPOINTMENT_STATUSES",
    "NotificationChannel",
    "NotificationStatus",
    "NotificationType",
    "PUNCTUALITY_NOTIFICATION_TYPES",
    "PushProviderName",
    "Role",
    "TrafficLevel",
    "WhatsappProviderName",
]
