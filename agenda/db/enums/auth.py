"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Tenant membership roles.

    - ADMIN: Tenant admin (audit surface, consent revocation, monitor trigger)
    - PROFESSIONAL: Sees notifications for their own appointments
    - STAFF: Front desk, sees tenant notifications
    """

    ADMIN = "admin"
    PROFESSIONAL = "professional"
    STAFF = "staff"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_
