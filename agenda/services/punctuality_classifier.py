"""Punctuality classification and debounce rules (pure functions)."""

from __future__ import annotations

from typing import Sequence

from agenda.db.enums import NotificationType, PunctualityStatus
from agenda.utils.clock import minutes_until

__all__ = [
    "classify",
    "is_late",
    "minutes_until",
    "notification_type_for_status",
    "predicted_delay",
    "resolve_committed_status",
]

# Statuses that escalate beyond the in-app channel
LATE_STATUSES = frozenset({PunctualityStatus.LATE_OK, PunctualityStatus.LATE_CRITICAL})

_NOTIFICATION_TYPES = {
    PunctualityStatus.ON_TIME: NotificationType.PUNCTUALITY_ON_TIME,
    PunctualityStatus.LATE_OK: NotificationType.PUNCTUALITY_LATE_OK,
    PunctualityStatus.LATE_CRITICAL: NotificationType.PUNCTUALITY_LATE_CRITICAL,
}


def predicted_delay(eta_minutes: int | None, minutes_to_start: int) -> int | None:
    """Positive means the client is expected to arrive late."""
    if eta_minutes is None:
        return None
    return eta_minutes - minutes_to_start


def classify(
    eta_minutes: int | None,
    minutes_to_start: int,
    max_allowed_delay: int,
) -> PunctualityStatus:
    """
    Classify a single ETA observation.

    - no ETA -> NO_DATA
    - predicted delay <= 0 -> ON_TIME
    - 0 < predicted delay <= max_allowed_delay -> LATE_OK
    - otherwise -> LATE_CRITICAL
    """
    delay = predicted_delay(eta_minutes, minutes_to_start)
    if delay is None:
        return PunctualityStatus.NO_DATA
    if delay <= 0:
        return PunctualityStatus.ON_TIME
    if delay <= max_allowed_delay:
        return PunctualityStatus.LATE_OK
    return PunctualityStatus.LATE_CRITICAL


def resolve_committed_status(
    current: PunctualityStatus | str | None,
    latest_statuses: Sequence[PunctualityStatus | str],
) -> PunctualityStatus:
    """
    Apply the two-sample hysteresis rule.

    latest_statuses is newest first. The committed status only moves when the
    two most recent snapshots agree; otherwise the current one is held.
    """
    held = PunctualityStatus(current) if current else PunctualityStatus.NO_DATA
    if len(latest_statuses) < 2:
        return held
    newest, previous = PunctualityStatus(latest_statuses[0]), PunctualityStatus(latest_statuses[1])
    if newest == previous:
        return newest
    return held


def notification_type_for_status(status: PunctualityStatus | str) -> NotificationType | None:
    """NO_DATA has no notification."""
    return _NOTIFICATION_TYPES.get(PunctualityStatus(status))


def is_late(status: PunctualityStatus | str) -> bool:
    return PunctualityStatus(status) in LATE_STATUSES
