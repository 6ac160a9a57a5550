"""Notification-related enums."""

from enum import Enum


class NotificationChannel(str, Enum):
    """Delivery channels for notification_log rows."""

    IN_APP = "in_app"
    PUSH = "push"
    WHATSAPP = "whatsapp"
    SMS = "sms"  # Reserved


class NotificationType(str, Enum):
    """Punctuality notification types (one per non-empty status)."""

    PUNCTUALITY_ON_TIME = "punctuality_on_time"
    PUNCTUALITY_LATE_OK = "punctuality_late_ok"
    PUNCTUALITY_LATE_CRITICAL = "punctuality_late_critical"


class NotificationStatus(str, Enum):
    """
    Notification lifecycle.

    Flow: queued → sent | failed
          sent (in_app) → read
    FAILED is terminal.
    """

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    READ = "read"


class DispatchFailureReason(str, Enum):
    """Machine-readable reasons recorded on failed dispatch attempts."""

    PROFESSIONAL_USER_NOT_FOUND = "professional_user_not_found"
    NO_ACTIVE_DEVICE_TOKEN = "no_active_device_token"
    PROFESSIONAL_TARGET_NOT_FOUND = "professional_target_not_found"
    PROFESSIONAL_PHONE_NOT_FOUND = "professional_phone_not_found"
    PHONE_NUMBER_ID_NOT_FOUND = "phone_number_id_not_found"
    PROVIDER_SEND_FAILED = "provider_send_failed"


class PushProviderName(str, Enum):
    EXPO = "expo"
    NONE = "none"


class WhatsappProviderName(str, Enum):
    META = "meta"
    NONE = "none"


PUNCTUALITY_NOTIFICATION_TYPES = tuple(t.value for t in NotificationType)
