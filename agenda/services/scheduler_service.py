"""
Scheduler - periodic fan-out across tenants.

For each tenant with monitored appointments in the window: run the monitor
(no caller snapshots), then the push dispatcher, then the WhatsApp
dispatcher when it is configured. Each step is isolated; a failing step is
reported and the remaining steps and tenants still run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.core.config import Settings
from agenda.core.structured_logging import build_log_context
from agenda.db.enums import MONITORED_APPOINTMENT_STATUSES
from agenda.db.models import Appointment
from agenda.schemas.punctuality import (
    DispatchResult,
    MonitorRequest,
    MonitorResult,
    SchedulerRequest,
    SchedulerResult,
    SchedulerStep,
    TenantSchedulerResult,
)
from agenda.services import dispatch_service
from agenda.services.eta_service import EtaEstimator
from agenda.services.punctuality_monitor_service import MonitorSettings, run_monitor
from agenda.utils.clock import utcnow

logger = logging.getLogger(__name__)

WHATSAPP_NOT_CONFIGURED = "whatsapp_dispatcher_not_configured"


def discover_tenant_ids(
    db: Session,
    now: datetime,
    window_before_min: int,
    window_after_min: int,
    max_tenants: int,
    scan_limit: int = 5000,
) -> list[UUID]:
    """Distinct tenants owning monitored appointments in the window, soonest appointment first."""
    rows = (
        db.query(Appointment.tenant_id)
        .filter(
            Appointment.status.in_(MONITORED_APPOINTMENT_STATUSES),
            Appointment.starts_at >= now - timedelta(minutes=window_before_min),
            Appointment.starts_at <= now + timedelta(minutes=window_after_min),
        )
        .order_by(Appointment.starts_at.asc())
        .limit(scan_limit)
        .all()
    )
    tenant_ids: list[UUID] = []
    for row in rows:
        if row.tenant_id not in tenant_ids:
            tenant_ids.append(row.tenant_id)
            if len(tenant_ids) >= max_tenants:
                break
    return tenant_ids


def _run_step(
    name: str,
    db: Session,
    tenant_id: UUID,
    step: Callable[[], MonitorResult | DispatchResult],
) -> SchedulerStep:
    try:
        return SchedulerStep(ok=True, result=step())
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Scheduler step %s failed",
            name,
            extra=build_log_context(tenant_id=tenant_id, source="scheduler"),
        )
        return SchedulerStep(ok=False, error=str(exc))


def run_scheduler(
    db: Session,
    request: SchedulerRequest,
    settings: Settings,
    estimator: EtaEstimator | None = None,
    push_provider=None,
    whatsapp_provider=None,
    now: datetime | None = None,
) -> SchedulerResult:
    """One scheduler tick (monitor + dispatchers per tenant)."""
    now = now or utcnow()
    monitor_config = MonitorSettings.from_settings(settings)
    push_config = dispatch_service.PushDispatchSettings.from_settings(settings)
    whatsapp_config = dispatch_service.WhatsappDispatchSettings.from_settings(settings)
    whatsapp_enabled = bool(settings.PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET)

    if request.tenant_id:
        tenant_ids = [request.tenant_id]
    else:
        tenant_ids = discover_tenant_ids(
            db,
            now,
            request.window_before_min,
            request.window_after_min,
            request.max_tenants,
            scan_limit=settings.PUNCTUALITY_SCHEDULER_SCAN_LIMIT,
        )

    result = SchedulerResult()
    for tenant_id in tenant_ids:
        monitor_request = MonitorRequest(
            tenant_id=tenant_id,
            source=request.source,
            window_before_min=request.window_before_min,
            window_after_min=request.window_after_min,
        )
        monitor_step = _run_step(
            "monitor",
            db,
            tenant_id,
            lambda: run_monitor(
                db, tenant_id, monitor_request, monitor_config, estimator=estimator, now=now
            ),
        )
        push_step = _run_step(
            "push_dispatcher",
            db,
            tenant_id,
            lambda: dispatch_service.dispatch_push(
                db,
                config=push_config,
                limit=request.dispatch_limit,
                tenant_id=tenant_id,
                provider=push_provider,
                now=now,
            ),
        )
        if whatsapp_enabled:
            whatsapp_step = _run_step(
                "whatsapp_dispatcher",
                db,
                tenant_id,
                lambda: dispatch_service.dispatch_whatsapp(
                    db,
                    config=whatsapp_config,
                    limit=request.dispatch_limit,
                    tenant_id=tenant_id,
                    provider=whatsapp_provider,
                    now=now,
                ),
            )
        else:
            whatsapp_step = SchedulerStep(ok=True, skipped=True, reason=WHATSAPP_NOT_CONFIGURED)

        tenant_result = TenantSchedulerResult(
            tenant_id=tenant_id,
            ok=monitor_step.ok and push_step.ok and whatsapp_step.ok,
            monitor=monitor_step,
            push_dispatcher=push_step,
            whatsapp_dispatcher=whatsapp_step,
        )
        result.results.append(tenant_result)
        result.triggered += 1
        _accumulate(result, tenant_result)

    result.ok = all(item.ok for item in result.results)
    logger.info(
        "Scheduler tick: tenants=%s changed=%s notifications=%s push_sent=%s whatsapp_sent=%s",
        result.triggered,
        result.changed_total,
        result.notifications_total,
        result.push_sent_total,
        result.whatsapp_sent_total,
        extra=build_log_context(source=request.source),
    )
    return result


def _accumulate(result: SchedulerResult, tenant_result: TenantSchedulerResult) -> None:
    monitor = tenant_result.monitor.result
    if isinstance(monitor, MonitorResult):
        result.changed_total += monitor.changed
        result.notifications_total += (
            monitor.notifications_queued + monitor.push_queued + monitor.whatsapp_queued
        )

    push = tenant_result.push_dispatcher.result
    if isinstance(push, DispatchResult):
        result.push_processed_total += push.processed
        result.push_sent_total += push.sent
        result.push_failed_total += push.failed

    whatsapp = tenant_result.whatsapp_dispatcher.result
    if isinstance(whatsapp, DispatchResult):
        result.whatsapp_processed_total += whatsapp.processed
        result.whatsapp_sent_total += whatsapp.sent
        result.whatsapp_failed_total += whatsapp.failed
