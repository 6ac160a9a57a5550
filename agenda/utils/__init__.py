"""Utility modules."""

from agenda.utils.clock import ensure_aware, minutes_until, utcnow
from agenda.utils.normalization import normalize_whatsapp_number

__all__ = [
    # Clock
    "ensure_aware",
    "minutes_until",
    "utcnow",
    # Normalization
    "normalize_whatsapp_number",
]
