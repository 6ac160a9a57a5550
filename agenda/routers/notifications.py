"""
Notifications Router - /me/notifications endpoints.

In-app punctuality notification inbox. Professionals see notifications for
their own appointments; admins and staff see the whole tenant.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agenda.core.deps import get_current_session, get_db, require_csrf_header
from agenda.db.enums import Role
from agenda.schemas.auth import UserSession
from agenda.schemas.punctuality import NotificationListResponse, NotificationRead
from agenda.services import notification_service


router = APIRouter()


class UnreadCountResponse(BaseModel):
    """Unread count only (for polling)."""
    count: int


def _professional_scope(session: UserSession) -> UUID | None:
    return session.user_id if session.role == Role.PROFESSIONAL else None


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get in-app punctuality notifications, newest first."""
    scope = _professional_scope(session)
    notifications = notification_service.get_in_app_notifications(
        db=db,
        tenant_id=session.tenant_id,
        professional_user_id=scope,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    total = notification_service.count_in_app_notifications(
        db=db,
        tenant_id=session.tenant_id,
        professional_user_id=scope,
        unread_only=unread_only,
    )
    unread = notification_service.count_in_app_notifications(
        db=db,
        tenant_id=session.tenant_id,
        professional_user_id=scope,
        unread_only=True,
    )

    return NotificationListResponse(
        items=[NotificationRead.model_validate(n) for n in notifications],
        total=total,
        unread=unread,
    )


@router.get("/notifications/count", response_model=UnreadCountResponse)
def get_unread_count(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get unread notification count (for polling)."""
    count = notification_service.count_in_app_notifications(
        db=db,
        tenant_id=session.tenant_id,
        professional_user_id=_professional_scope(session),
        unread_only=True,
    )
    return UnreadCountResponse(count=count)


@router.post(
    "/notifications/{notification_id}/read",
    response_model=NotificationRead,
    dependencies=[Depends(require_csrf_header)],
)
def mark_notification_read(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Mark a notification as read."""
    notification = notification_service.mark_read(
        db=db,
        notification_id=notification_id,
        tenant_id=session.tenant_id,
        professional_user_id=_professional_scope(session),
    )

    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    return NotificationRead.model_validate(notification)
