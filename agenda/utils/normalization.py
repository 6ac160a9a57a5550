"""Normalization helpers for dispatch targets."""

import re
from typing import Optional

MIN_WHATSAPP_DIGITS = 10


def normalize_whatsapp_number(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a stored phone to the digits-only form the WhatsApp API expects.

    Returns None when nothing usable remains (fewer than 10 digits).
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) < MIN_WHATSAPP_DIGITS:
        return None
    return digits
