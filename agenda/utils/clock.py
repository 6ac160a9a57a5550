"""Time helpers shared by the punctuality pipeline."""

import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def minutes_until(reference: datetime, target: datetime) -> int:
    """Whole minutes from reference to target, floored (negative once target passed)."""
    delta = ensure_aware(target) - ensure_aware(reference)
    return math.floor(delta.total_seconds() / 60)
