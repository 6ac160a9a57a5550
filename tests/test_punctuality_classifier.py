"""Pure classification and debounce rules."""

from datetime import datetime, timedelta, timezone

import pytest

from agenda.db.enums import NotificationType, PunctualityStatus
from agenda.services.punctuality_classifier import (
    classify,
    is_late,
    minutes_until,
    notification_type_for_status,
    predicted_delay,
    resolve_committed_status,
)


@pytest.mark.parametrize(
    ("eta", "minutes_to_start", "max_delay", "expected"),
    [
        (None, 30, 10, PunctualityStatus.NO_DATA),
        (20, 30, 10, PunctualityStatus.ON_TIME),
        (30, 30, 10, PunctualityStatus.ON_TIME),  # delay 0
        (35, 30, 10, PunctualityStatus.LATE_OK),
        (40, 30, 10, PunctualityStatus.LATE_OK),  # delay == max
        (41, 30, 10, PunctualityStatus.LATE_CRITICAL),
        (5, -2, 0, PunctualityStatus.LATE_CRITICAL),  # already started
    ],
)
def test_classify(eta, minutes_to_start, max_delay, expected):
    assert classify(eta, minutes_to_start, max_delay) == expected


def test_predicted_delay():
    assert predicted_delay(35, 30) == 5
    assert predicted_delay(10, 30) == -20
    assert predicted_delay(None, 30) is None


def test_debounce_requires_two_agreeing_snapshots():
    late = PunctualityStatus.LATE_OK.value
    on_time = PunctualityStatus.ON_TIME.value

    assert resolve_committed_status("no_data", [late, late]) == PunctualityStatus.LATE_OK
    # Disagreement holds the committed status
    assert resolve_committed_status("on_time", [late, on_time]) == PunctualityStatus.ON_TIME
    # One snapshot is never enough
    assert resolve_committed_status("no_data", [late]) == PunctualityStatus.NO_DATA
    assert resolve_committed_status(None, []) == PunctualityStatus.NO_DATA


def test_debounce_only_looks_at_two_newest():
    statuses = ["late_critical", "late_critical", "on_time", "on_time"]
    assert resolve_committed_status("on_time", statuses) == PunctualityStatus.LATE_CRITICAL


def test_notification_type_mapping():
    assert notification_type_for_status("no_data") is None
    assert notification_type_for_status("on_time") == NotificationType.PUNCTUALITY_ON_TIME
    assert notification_type_for_status("late_ok") == NotificationType.PUNCTUALITY_LATE_OK
    assert (
        notification_type_for_status(PunctualityStatus.LATE_CRITICAL)
        == NotificationType.PUNCTUALITY_LATE_CRITICAL
    )


def test_is_late():
    assert is_late("late_ok")
    assert is_late("late_critical")
    assert not is_late("on_time")
    assert not is_late("no_data")


def test_minutes_until_floors():
    reference = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert minutes_until(reference, reference + timedelta(minutes=29, seconds=59)) == 29
    assert minutes_until(reference, reference + timedelta(minutes=30)) == 30
    assert minutes_until(reference, reference - timedelta(seconds=30)) == -1


def test_minutes_until_treats_naive_as_utc():
    reference = datetime(2026, 3, 1, 12, 0)
    target = datetime(2026, 3, 1, 12, 45, tzinfo=timezone.utc)
    assert minutes_until(reference, target) == 45
