"""Tenant-admin punctuality audit: metrics, investigation, consent revocation and export."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from agenda.core.deps import get_db, require_csrf_header, require_roles
from agenda.db.enums import Role
from agenda.schemas.auth import UserSession
from agenda.schemas.punctuality import (
    AppointmentInvestigation,
    ConsentRead,
    PunctualityMetrics,
)
from agenda.services import punctuality_audit_service
from agenda.utils.clock import utcnow


router = APIRouter(prefix="/punctuality", tags=["punctuality"])


@router.get("/metrics", response_model=PunctualityMetrics)
def get_metrics(
    days: int = Query(7, ge=1, le=90),
    session: UserSession = Depends(require_roles([Role.ADMIN])),
    db: Session = Depends(get_db),
):
    """Delivery rates, status transitions and ETA quality for the last N days."""
    return punctuality_audit_service.get_metrics(db, session.tenant_id, days=days)


@router.get("/appointments/{appointment_id}/investigation", response_model=AppointmentInvestigation)
def investigate_appointment(
    appointment_id: UUID,
    session: UserSession = Depends(require_roles([Role.ADMIN])),
    db: Session = Depends(get_db),
):
    try:
        return punctuality_audit_service.investigate_appointment(db, session.tenant_id, appointment_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Appointment not found")


@router.post(
    "/consents/{consent_id}/revoke",
    response_model=ConsentRead,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_consent(
    consent_id: UUID,
    session: UserSession = Depends(require_roles([Role.ADMIN])),
    db: Session = Depends(get_db),
):
    """Revoke a client's location consent; the next monitor pass blanks tracked state."""
    try:
        return punctuality_audit_service.revoke_consent(db, session.tenant_id, consent_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Consent not found")


@router.get("/appointments/{appointment_id}/consents.csv")
def export_consents(
    appointment_id: UUID,
    session: UserSession = Depends(require_roles([Role.ADMIN])),
    db: Session = Depends(get_db),
) -> Response:
    """Export the appointment's consent trail (CSV)."""
    try:
        content = punctuality_audit_service.export_consent_trail(db, session.tenant_id, appointment_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Appointment not found")

    filename = f"consents_{appointment_id}_{utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=content, media_type="text/csv; charset=utf-8", headers=headers)
