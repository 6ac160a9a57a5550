"""Punctuality monitoring enums."""

from enum import Enum


class PunctualityStatus(str, Enum):
    """
    Arrival classification for an appointment.

    Used both for point-in-time snapshot classification and for the
    committed (debounced) status stored on the appointment.
    """

    NO_DATA = "no_data"
    ON_TIME = "on_time"
    LATE_OK = "late_ok"  # Late, within the allowed delay
    LATE_CRITICAL = "late_critical"  # Late beyond the allowed delay


class TrafficLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConsentStatus(str, Enum):
    """Client live-location consent status."""

    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ConsentSourceChannel(str, Enum):
    """Where a consent record was captured or changed."""

    CLIENT_APP = "client_app"
    WHATSAPP = "whatsapp"
    WEB_DASHBOARD = "web_dashboard"


class EtaProviderName(str, Enum):
    """Configured ETA provider (PUNCTUALITY_ETA_PROVIDER)."""

    GOOGLE = "google"
    MAPBOX = "mapbox"
    OSRM = "osrm"
    NONE = "none"


DEFAULT_PUNCTUALITY_STATUS = PunctualityStatus.NO_DATA
