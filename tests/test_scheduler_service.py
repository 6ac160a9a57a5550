"""Tests for the scheduler fan-out."""

from datetime import timedelta

from agenda.core.config import settings
from agenda.db.models import DevicePushToken, NotificationLog
from agenda.schemas.punctuality import MonitorRequest, MonitorSnapshotInput, SchedulerRequest
from agenda.services import scheduler_service
from agenda.services.punctuality_monitor_service import MonitorSettings, run_monitor
from agenda.services.scheduler_service import (
    WHATSAPP_NOT_CONFIGURED,
    discover_tenant_ids,
    run_scheduler,
)


def _settings(**overrides):
    values = {
        "PUNCTUALITY_ETA_PROVIDER": "none",
        "PUSH_PROVIDER": "none",
        "WHATSAPP_DISPATCH_PROVIDER": "none",
        "PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET": "",
    }
    values.update(overrides)
    return settings.model_copy(update=values)


def _commit_late_transition(db, appointment, now):
    """Two agreeing late snapshots: late_ok is committed and in_app + push are queued."""
    request = MonitorRequest(
        snapshots=[
            MonitorSnapshotInput(
                appointment_id=appointment.id,
                eta_minutes=40,
                captured_at=now - timedelta(minutes=offset),
            )
            for offset in (3, 2)
        ]
    )
    run_monitor(db, appointment.tenant_id, request, MonitorSettings(), now=now - timedelta(minutes=2))


def test_discover_tenants_in_window(db, now, make_tenant, make_professional, make_appointment):
    first, second, idle = make_tenant("A"), make_tenant("B"), make_tenant("C")
    for tenant, offset in ((first, 20), (second, 10), (idle, 600)):
        make_appointment(tenant, make_professional(tenant), starts_in_minutes=offset)

    assert discover_tenant_ids(db, now, 15, 180, 10) == [second.id, first.id]
    assert discover_tenant_ids(db, now, 15, 180, 1) == [second.id]


def test_scheduler_runs_monitor_then_push(db, now, appointment, professional_user, grant_consent):
    grant_consent(appointment)
    db.add(
        DevicePushToken(
            tenant_id=appointment.tenant_id,
            user_id=professional_user.id,
            token="ExponentPushToken[x]",
        )
    )
    db.commit()
    _commit_late_transition(db, appointment, now)

    result = run_scheduler(db, SchedulerRequest(), _settings(), now=now)

    assert result.ok
    assert result.triggered == 1
    tenant_result = result.results[0]
    assert tenant_result.tenant_id == appointment.tenant_id
    assert tenant_result.monitor.ok
    assert tenant_result.push_dispatcher.ok
    assert result.changed_total == 0
    assert result.push_processed_total == 1
    assert result.push_sent_total == 1

    push = db.query(NotificationLog).filter(NotificationLog.channel == "push").one()
    assert push.status == "sent"


def test_whatsapp_step_skipped_without_secret(db, now, appointment):
    result = run_scheduler(db, SchedulerRequest(tenant_id=appointment.tenant_id), _settings(), now=now)

    whatsapp = result.results[0].whatsapp_dispatcher
    assert whatsapp.ok
    assert whatsapp.skipped
    assert whatsapp.reason == WHATSAPP_NOT_CONFIGURED
    assert result.ok


def test_whatsapp_step_runs_with_secret(db, now, appointment):
    config = _settings(PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET="wa-secret")

    result = run_scheduler(db, SchedulerRequest(tenant_id=appointment.tenant_id), config, now=now)

    whatsapp = result.results[0].whatsapp_dispatcher
    assert whatsapp.ok
    assert not whatsapp.skipped
    assert whatsapp.result.provider == "none"


def test_explicit_tenant_skips_discovery(db, now, make_tenant):
    empty = make_tenant("Empty")

    result = run_scheduler(db, SchedulerRequest(tenant_id=empty.id), _settings(), now=now)

    assert result.triggered == 1
    assert result.results[0].monitor.result.processed == 0


def test_no_tenants_in_window(db, now):
    result = run_scheduler(db, SchedulerRequest(), _settings(), now=now)

    assert result.ok
    assert result.triggered == 0
    assert result.results == []


def test_failing_monitor_does_not_stop_dispatch(db, now, appointment, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("monitor exploded")

    monkeypatch.setattr(scheduler_service, "run_monitor", boom)

    result = run_scheduler(db, SchedulerRequest(tenant_id=appointment.tenant_id), _settings(), now=now)

    tenant_result = result.results[0]
    assert not tenant_result.ok
    assert not tenant_result.monitor.ok
    assert tenant_result.monitor.error == "monitor exploded"
    assert tenant_result.push_dispatcher.ok
    assert not result.ok


def test_failing_tenant_does_not_stop_others(db, now, make_tenant, make_professional, make_appointment, monkeypatch):
    first, second = make_tenant("A"), make_tenant("B")
    make_appointment(first, make_professional(first), starts_in_minutes=10)
    make_appointment(second, make_professional(second), starts_in_minutes=20)

    def monitor_first_fails(db_, tenant_id, *args, **kwargs):
        if tenant_id == first.id:
            raise RuntimeError("tenant A failed")
        return run_monitor(db_, tenant_id, *args, **kwargs)

    monkeypatch.setattr(scheduler_service, "run_monitor", monitor_first_fails)

    result = run_scheduler(db, SchedulerRequest(), _settings(), now=now)

    assert result.triggered == 2
    assert [item.ok for item in result.results] == [False, True]
    assert result.results[1].monitor.result.processed == 1
