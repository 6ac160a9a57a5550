"""
Internal endpoints for the punctuality pipeline (cron / scheduled triggers).

Each trigger has its own shared secret, sent in a function-specific header
(or a `secret` body field, except the monitor). An unset secret disables
the trigger (501). The monitor also accepts a tenant admin session.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.core.deps import get_db, get_optional_session
from agenda.core.security import verify_secret
from agenda.core.structured_logging import build_log_context
from agenda.db.enums import Role
from agenda.schemas.auth import UserSession
from agenda.schemas.punctuality import (
    DispatchRequest,
    DispatchResult,
    MonitorRequest,
    MonitorResult,
    RetentionRequest,
    RetentionResult,
    SchedulerRequest,
    SchedulerResult,
)
from agenda.services import dispatch_service, retention_service, scheduler_service
from agenda.services.punctuality_monitor_service import MonitorSettings, run_monitor


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/punctuality", tags=["internal"])


def require_secret(name: str, expected: str, provided: str | None) -> None:
    """Verify a trigger secret (501 when not configured, 401 on mismatch)."""
    if not expected:
        raise HTTPException(status_code=501, detail=f"{name} not configured")
    if not verify_secret(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid secret")


@router.post("/monitor", response_model=MonitorResult)
def trigger_monitor(
    body: MonitorRequest,
    x_monitor_secret: str | None = Header(default=None),
    session: UserSession | None = Depends(get_optional_session),
    db: Session = Depends(get_db),
):
    """
    Run one monitor pass for a tenant.

    Admin session: the tenant comes from the session.
    Secret: `tenant_id` is required in the body.
    """
    if session and session.role == Role.ADMIN and not x_monitor_secret:
        tenant_id = session.tenant_id
    elif x_monitor_secret:
        require_secret("PUNCTUALITY_MONITOR_SECRET", settings.PUNCTUALITY_MONITOR_SECRET, x_monitor_secret)
        if not body.tenant_id:
            raise HTTPException(status_code=400, detail="tenant_id is required")
        tenant_id = body.tenant_id
    elif session:
        raise HTTPException(status_code=403, detail="Admin role required")
    else:
        raise HTTPException(status_code=401, detail="Not authenticated")

    logger.info(
        "Monitor triggered",
        extra=build_log_context(tenant_id=tenant_id, source=body.source, route="monitor"),
    )
    return run_monitor(db, tenant_id, body, MonitorSettings.from_settings(settings))


@router.post("/scheduler", response_model=SchedulerResult)
def trigger_scheduler(
    body: SchedulerRequest,
    x_scheduler_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    """Fan out monitor + dispatchers across tenants with upcoming appointments."""
    require_secret(
        "PUNCTUALITY_SCHEDULER_SECRET",
        settings.PUNCTUALITY_SCHEDULER_SECRET,
        x_scheduler_secret or body.secret,
    )
    return scheduler_service.run_scheduler(db, body, settings)


@router.post("/dispatch-push", response_model=DispatchResult)
def trigger_push_dispatch(
    body: DispatchRequest,
    x_push_dispatcher_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    require_secret(
        "PUNCTUALITY_PUSH_DISPATCHER_SECRET",
        settings.PUNCTUALITY_PUSH_DISPATCHER_SECRET,
        x_push_dispatcher_secret or body.secret,
    )
    return dispatch_service.dispatch_push(
        db,
        config=dispatch_service.PushDispatchSettings.from_settings(settings),
        limit=body.limit,
        tenant_id=body.tenant_id,
    )


@router.post("/dispatch-whatsapp", response_model=DispatchResult)
def trigger_whatsapp_dispatch(
    body: DispatchRequest,
    x_whatsapp_dispatcher_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    require_secret(
        "PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET",
        settings.PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET,
        x_whatsapp_dispatcher_secret or body.secret,
    )
    return dispatch_service.dispatch_whatsapp(
        db,
        config=dispatch_service.WhatsappDispatchSettings.from_settings(settings),
        limit=body.limit,
        tenant_id=body.tenant_id,
    )


@router.post("/retention", response_model=RetentionResult)
def trigger_retention(
    body: RetentionRequest,
    x_retention_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    """Purge punctuality data past each tenant's retention windows."""
    require_secret(
        "PUNCTUALITY_RETENTION_SECRET",
        settings.PUNCTUALITY_RETENTION_SECRET,
        x_retention_secret or body.secret,
    )
    return retention_service.run_retention(db, body)
