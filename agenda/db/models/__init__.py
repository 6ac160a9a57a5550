"""SQLAlchemy ORM models."""

from agenda.db.models.notifications import (
    DevicePushToken,
    NotificationLog,
    WhatsappChannelSetting,
)
from agenda.db.models.punctuality import (
    ClientLocationConsent,
    DelayPolicy,
    EtaSnapshot,
    PunctualityEvent,
    PunctualityRetentionPolicy,
)
from agenda.db.models.scheduling import (
    Appointment,
    Client,
    Professional,
    ServiceLocation,
)
from agenda.db.models.tenants import Membership, Tenant, User

__all__ = [
    "Appointment",
    "Client",
    "ClientLocationConsent",
    "DelayPolicy",
    "DevicePushToken",
    "EtaSnapshot",
    "Membership",
    "NotificationLog",
    "Professional",
    "PunctualityEvent",
    "PunctualityRetentionPolicy",
    "ServiceLocation",
    "Tenant",
    "User",
    "WhatsappChannelSetting",
]
