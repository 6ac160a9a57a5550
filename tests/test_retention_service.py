"""Tests for punctuality data retention."""

from datetime import timedelta

import pytest

from agenda.db.enums import ConsentStatus
from agenda.db.models import (
    ClientLocationConsent,
    EtaSnapshot,
    NotificationLog,
    PunctualityEvent,
    PunctualityRetentionPolicy,
)
from agenda.schemas.punctuality import RetentionRequest
from agenda.services import retention_service
from agenda.services.retention_service import run_retention


@pytest.fixture
def policy(db, tenant):
    policy = PunctualityRetentionPolicy(
        tenant_id=tenant.id,
        keep_eta_snapshots_days=30,
        keep_punctuality_events_days=180,
        keep_notification_log_days=90,
        delete_expired_consents_after_days=30,
    )
    db.add(policy)
    db.commit()
    return policy


def _snapshot(appointment, captured_at):
    return EtaSnapshot(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        captured_at=captured_at,
        eta_minutes=20,
        minutes_to_start=30,
        predicted_arrival_delay=-10,
        status="on_time",
    )


def _event(appointment, occurred_at):
    return PunctualityEvent(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        old_status="no_data",
        new_status="on_time",
        max_allowed_delay=10,
        source="monitor",
        occurred_at=occurred_at,
    )


def _notification(appointment, created_at, notification_type="punctuality_on_time"):
    return NotificationLog(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        channel="in_app",
        type=notification_type,
        payload={},
        created_at=created_at,
    )


def test_purges_rows_past_each_window(db, now, appointment, policy, grant_consent):
    db.add_all(
        [
            _snapshot(appointment, now - timedelta(days=31)),
            _snapshot(appointment, now - timedelta(days=29)),
            _event(appointment, now - timedelta(days=181)),
            _event(appointment, now - timedelta(days=10)),
            _notification(appointment, now - timedelta(days=91)),
            _notification(appointment, now - timedelta(days=1)),
        ]
    )
    db.commit()
    grant_consent(appointment, status=ConsentStatus.EXPIRED, expires_at=now - timedelta(days=31))
    grant_consent(appointment, expires_at=now - timedelta(days=5))
    grant_consent(appointment)  # never expires

    result = run_retention(db, RetentionRequest(), now=now)

    assert result.ok
    assert result.processed_tenants == 1
    assert result.totals.eta_snapshots_deleted == 1
    assert result.totals.punctuality_events_deleted == 1
    assert result.totals.notification_log_deleted == 1
    assert result.totals.expired_consents_deleted == 1

    assert db.query(EtaSnapshot).count() == 1
    assert db.query(PunctualityEvent).count() == 1
    assert db.query(NotificationLog).count() == 1
    assert db.query(ClientLocationConsent).count() == 2


def test_only_punctuality_notifications_are_purged(db, now, appointment, policy):
    db.add(_notification(appointment, now - timedelta(days=200), notification_type="task_due"))
    db.commit()

    result = run_retention(db, RetentionRequest(), now=now)

    assert result.totals.notification_log_deleted == 0
    assert db.query(NotificationLog).count() == 1


def test_disabled_policy_is_skipped(db, now, appointment, policy):
    policy.enabled = False
    db.add(_snapshot(appointment, now - timedelta(days=400)))
    db.commit()

    result = run_retention(db, RetentionRequest(), now=now)

    assert result.processed_tenants == 0
    assert db.query(EtaSnapshot).count() == 1


def test_tenants_without_policy_are_untouched(db, now, appointment):
    db.add(_snapshot(appointment, now - timedelta(days=400)))
    db.commit()

    result = run_retention(db, RetentionRequest(), now=now)

    assert result.processed_tenants == 0
    assert db.query(EtaSnapshot).count() == 1


def test_tenant_filter(db, now, appointment, policy, make_tenant):
    other = make_tenant("Other")
    db.add(PunctualityRetentionPolicy(tenant_id=other.id))
    db.add(_snapshot(appointment, now - timedelta(days=400)))
    db.commit()

    result = run_retention(db, RetentionRequest(tenant_id=other.id), now=now)

    assert result.processed_tenants == 1
    assert result.results[0].tenant_id == other.id
    assert db.query(EtaSnapshot).count() == 1


def test_table_failure_is_isolated(db, now, appointment, policy, monkeypatch):
    db.add_all(
        [
            _snapshot(appointment, now - timedelta(days=31)),
            _event(appointment, now - timedelta(days=181)),
        ]
    )
    db.commit()

    original = retention_service._retention_queries

    def failing_snapshots(db_, policy_, now_):
        queries = original(db_, policy_, now_)

        def broken():
            raise RuntimeError("snapshot table locked")

        return [("eta_snapshots_deleted", broken)] + queries[1:]

    monkeypatch.setattr(retention_service, "_retention_queries", failing_snapshots)

    result = run_retention(db, RetentionRequest(), now=now)

    assert not result.ok
    tenant_result = result.results[0]
    assert tenant_result.errors[0].id == "eta_snapshots_deleted"
    assert tenant_result.eta_snapshots_deleted == 0
    assert tenant_result.punctuality_events_deleted == 1
    assert db.query(EtaSnapshot).count() == 1
