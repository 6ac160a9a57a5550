"""Tests for the internal pipeline trigger endpoints."""

from datetime import timedelta

import pytest

from agenda.core.config import settings
from agenda.db.models import DevicePushToken, NotificationLog, PunctualityRetentionPolicy


@pytest.fixture
def secrets(monkeypatch):
    values = {
        "PUNCTUALITY_MONITOR_SECRET": "monitor-secret",
        "PUNCTUALITY_SCHEDULER_SECRET": "scheduler-secret",
        "PUNCTUALITY_PUSH_DISPATCHER_SECRET": "push-secret",
        "PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET": "",
        "PUNCTUALITY_RETENTION_SECRET": "retention-secret",
        "PUNCTUALITY_ETA_PROVIDER": "none",
        "PUSH_PROVIDER": "none",
        "WHATSAPP_DISPATCH_PROVIDER": "none",
    }
    for name, value in values.items():
        monkeypatch.setattr(settings, name, value)
    return values


def _late_snapshots(appointment, now):
    return [
        {
            "appointment_id": str(appointment.id),
            "eta_minutes": 35,
            "captured_at": (now - timedelta(minutes=offset)).isoformat(),
        }
        for offset in (1, 0)
    ]


# =============================================================================
# Monitor
# =============================================================================


async def test_monitor_with_secret(client, db, now, appointment, grant_consent, secrets):
    grant_consent(appointment)

    response = await client.post(
        "/internal/punctuality/monitor",
        json={"tenant_id": str(appointment.tenant_id), "snapshots": _late_snapshots(appointment, now)},
        headers={"X-Monitor-Secret": "monitor-secret"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["snapshots_ingested"] == 2
    assert data["changed"] == 1
    assert data["push_queued"] == 1
    db.refresh(appointment)
    assert appointment.punctuality_status == "late_ok"


async def test_monitor_secret_requires_tenant(client, secrets):
    response = await client.post(
        "/internal/punctuality/monitor",
        json={},
        headers={"X-Monitor-Secret": "monitor-secret"},
    )

    assert response.status_code == 400


async def test_monitor_wrong_secret(client, appointment, secrets):
    response = await client.post(
        "/internal/punctuality/monitor",
        json={"tenant_id": str(appointment.tenant_id)},
        headers={"X-Monitor-Secret": "nope"},
    )

    assert response.status_code == 401


async def test_monitor_secret_not_configured(client, appointment, secrets, monkeypatch):
    monkeypatch.setattr(settings, "PUNCTUALITY_MONITOR_SECRET", "")

    response = await client.post(
        "/internal/punctuality/monitor",
        json={"tenant_id": str(appointment.tenant_id)},
        headers={"X-Monitor-Secret": "anything"},
    )

    assert response.status_code == 501


async def test_monitor_without_credentials(client, secrets):
    response = await client.post("/internal/punctuality/monitor", json={})

    assert response.status_code == 401


async def test_monitor_with_admin_session_uses_session_tenant(
    authed_client, db, now, appointment, grant_consent, make_tenant, secrets
):
    grant_consent(appointment)
    other = make_tenant("Other")

    response = await authed_client.post(
        "/internal/punctuality/monitor",
        json={"tenant_id": str(other.id), "snapshots": _late_snapshots(appointment, now)},
    )

    assert response.status_code == 200
    assert response.json()["tenant_id"] == str(appointment.tenant_id)
    assert response.json()["snapshots_ingested"] == 2


async def test_monitor_rejects_non_admin_session(professional_client, secrets):
    response = await professional_client.post("/internal/punctuality/monitor", json={})

    assert response.status_code == 403


async def test_monitor_rejects_invalid_body(client, appointment, secrets):
    response = await client.post(
        "/internal/punctuality/monitor",
        json={"tenant_id": str(appointment.tenant_id), "window_after_min": 2},
        headers={"X-Monitor-Secret": "monitor-secret"},
    )

    assert response.status_code == 422


# =============================================================================
# Scheduler / dispatchers / retention
# =============================================================================


async def test_scheduler_with_header_secret(client, appointment, secrets):
    response = await client.post(
        "/internal/punctuality/scheduler",
        json={},
        headers={"X-Scheduler-Secret": "scheduler-secret"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["triggered"] == 1
    assert data["results"][0]["whatsapp_dispatcher"]["skipped"] is True
    assert data["results"][0]["whatsapp_dispatcher"]["reason"] == "whatsapp_dispatcher_not_configured"


async def test_scheduler_with_body_secret(client, secrets):
    response = await client.post("/internal/punctuality/scheduler", json={"secret": "scheduler-secret"})

    assert response.status_code == 200
    assert response.json()["triggered"] == 0


async def test_scheduler_wrong_secret(client, secrets):
    response = await client.post("/internal/punctuality/scheduler", json={"secret": "wrong"})

    assert response.status_code == 401


async def test_push_dispatch(client, db, now, appointment, professional_user, grant_consent, secrets):
    from agenda.schemas.punctuality import MonitorRequest, MonitorSnapshotInput
    from agenda.services.punctuality_monitor_service import MonitorSettings, run_monitor

    grant_consent(appointment)
    db.add(
        DevicePushToken(
            tenant_id=appointment.tenant_id, user_id=professional_user.id, token="ExponentPushToken[t]"
        )
    )
    db.commit()
    request = MonitorRequest(
        snapshots=[MonitorSnapshotInput.model_validate(item) for item in _late_snapshots(appointment, now)]
    )
    run_monitor(db, appointment.tenant_id, request, MonitorSettings(), now=now)

    response = await client.post(
        "/internal/punctuality/dispatch-push",
        json={"limit": 10},
        headers={"X-Push-Dispatcher-Secret": "push-secret"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "processed": 1,
        "sent": 1,
        "failed": 0,
        "provider": "none",
        "errors": [],
    }
    push = db.query(NotificationLog).filter(NotificationLog.channel == "push").one()
    assert push.status == "sent"


async def test_whatsapp_dispatch_disabled_without_secret(client, secrets):
    response = await client.post("/internal/punctuality/dispatch-whatsapp", json={"secret": "x"})

    assert response.status_code == 501


async def test_dispatch_limit_validation(client, secrets):
    response = await client.post(
        "/internal/punctuality/dispatch-push",
        json={"limit": 500},
        headers={"X-Push-Dispatcher-Secret": "push-secret"},
    )

    assert response.status_code == 422


async def test_retention(client, db, tenant, secrets):
    db.add(PunctualityRetentionPolicy(tenant_id=tenant.id))
    db.commit()

    response = await client.post(
        "/internal/punctuality/retention",
        json={"secret": "retention-secret"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["processed_tenants"] == 1
    assert data["totals"] == {
        "eta_snapshots_deleted": 0,
        "punctuality_events_deleted": 0,
        "notification_log_deleted": 0,
        "expired_consents_deleted": 0,
    }
