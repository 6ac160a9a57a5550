"""Retention cleanup for punctuality data (snapshots, events, notifications, consents)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Query, Session

from agenda.core.structured_logging import build_log_context
from agenda.db.enums import PUNCTUALITY_NOTIFICATION_TYPES
from agenda.db.models import (
    ClientLocationConsent,
    EtaSnapshot,
    NotificationLog,
    PunctualityEvent,
    PunctualityRetentionPolicy,
)
from agenda.schemas.punctuality import (
    ItemError,
    RetentionCounts,
    RetentionRequest,
    RetentionResult,
    TenantRetentionResult,
)
from agenda.utils.clock import utcnow

logger = logging.getLogger(__name__)


def list_enabled_policies(
    db: Session, tenant_id=None, limit: int = 200
) -> list[PunctualityRetentionPolicy]:
    query = db.query(PunctualityRetentionPolicy).filter(PunctualityRetentionPolicy.enabled.is_(True))
    if tenant_id:
        query = query.filter(PunctualityRetentionPolicy.tenant_id == tenant_id)
    return query.order_by(PunctualityRetentionPolicy.updated_at.asc()).limit(limit).all()


def _retention_queries(
    db: Session, policy: PunctualityRetentionPolicy, now: datetime
) -> list[tuple[str, Callable[[], Query]]]:
    """(counter name, query factory) per table; each query selects rows past the window."""
    tenant_id = policy.tenant_id

    def snapshots() -> Query:
        cutoff = now - timedelta(days=policy.keep_eta_snapshots_days)
        return db.query(EtaSnapshot).filter(
            EtaSnapshot.tenant_id == tenant_id,
            EtaSnapshot.captured_at < cutoff,
        )

    def events() -> Query:
        cutoff = now - timedelta(days=policy.keep_punctuality_events_days)
        return db.query(PunctualityEvent).filter(
            PunctualityEvent.tenant_id == tenant_id,
            PunctualityEvent.occurred_at < cutoff,
        )

    def notifications() -> Query:
        cutoff = now - timedelta(days=policy.keep_notification_log_days)
        return db.query(NotificationLog).filter(
            NotificationLog.tenant_id == tenant_id,
            NotificationLog.type.in_(PUNCTUALITY_NOTIFICATION_TYPES),
            NotificationLog.created_at < cutoff,
        )

    def consents() -> Query:
        cutoff = now - timedelta(days=policy.delete_expired_consents_after_days)
        return db.query(ClientLocationConsent).filter(
            ClientLocationConsent.tenant_id == tenant_id,
            ClientLocationConsent.expires_at.isnot(None),
            ClientLocationConsent.expires_at < cutoff,
        )

    return [
        ("eta_snapshots_deleted", snapshots),
        ("punctuality_events_deleted", events),
        ("notification_log_deleted", notifications),
        ("expired_consents_deleted", consents),
    ]


def purge_tenant(
    db: Session, policy: PunctualityRetentionPolicy, now: datetime | None = None
) -> TenantRetentionResult:
    """
    Apply one tenant's retention windows.

    Each table is deleted and committed on its own; a failure on one table
    is recorded and the others still run.
    """
    now = now or utcnow()
    tenant_id = policy.tenant_id
    result = TenantRetentionResult(tenant_id=tenant_id)

    for counter, build_query in _retention_queries(db, policy, now):
        try:
            deleted = build_query().delete(synchronize_session=False)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Retention delete failed for %s",
                counter,
                extra=build_log_context(tenant_id=tenant_id, source="retention"),
            )
            result.errors.append(ItemError(id=counter, error=str(exc)))
            continue
        setattr(result, counter, deleted or 0)

    return result


def run_retention(
    db: Session, request: RetentionRequest, now: datetime | None = None
) -> RetentionResult:
    now = now or utcnow()
    policies = list_enabled_policies(db, tenant_id=request.tenant_id, limit=request.max_tenants)

    result = RetentionResult()
    totals = RetentionCounts()
    for policy in policies:
        tenant_result = purge_tenant(db, policy, now=now)
        result.results.append(tenant_result)
        for counter in RetentionCounts.model_fields:
            setattr(totals, counter, getattr(totals, counter) + getattr(tenant_result, counter))

    result.processed_tenants = len(result.results)
    result.totals = totals
    result.ok = not any(item.errors for item in result.results)
    logger.info(
        "Retention pass: tenants=%s snapshots=%s events=%s notifications=%s consents=%s",
        result.processed_tenants,
        totals.eta_snapshots_deleted,
        totals.punctuality_events_deleted,
        totals.notification_log_deleted,
        totals.expired_consents_deleted,
        extra=build_log_context(tenant_id=request.tenant_id, source="retention"),
    )
    return result
