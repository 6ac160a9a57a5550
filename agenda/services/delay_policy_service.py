"""Delay policy resolution.

Not cached: policies may change between fan-out cycles and the lookup is cheap.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.db.models import DelayPolicy

DEFAULT_MAX_ALLOWED_DELAY_MIN = 10


@dataclass(frozen=True)
class ResolvedDelayPolicy:
    max_allowed_delay_min: int = DEFAULT_MAX_ALLOWED_DELAY_MIN
    fallback_whatsapp_for_professional: bool = False


DEFAULT_DELAY_POLICY = ResolvedDelayPolicy()


def _to_resolved(policy: DelayPolicy) -> ResolvedDelayPolicy:
    return ResolvedDelayPolicy(
        max_allowed_delay_min=int(policy.max_allowed_delay_min),
        fallback_whatsapp_for_professional=bool(policy.fallback_whatsapp_for_professional),
    )


def resolve_policy(db: Session, tenant_id: UUID, professional_id: UUID) -> ResolvedDelayPolicy:
    """Professional override, else tenant-wide policy, else the default (10 min, no WhatsApp)."""
    professional_policy = db.query(DelayPolicy).filter(
        DelayPolicy.tenant_id == tenant_id,
        DelayPolicy.professional_id == professional_id,
    ).order_by(DelayPolicy.updated_at.desc()).first()
    if professional_policy:
        return _to_resolved(professional_policy)

    tenant_policy = db.query(DelayPolicy).filter(
        DelayPolicy.tenant_id == tenant_id,
        DelayPolicy.professional_id.is_(None),
    ).order_by(DelayPolicy.updated_at.desc()).first()
    if tenant_policy:
        return _to_resolved(tenant_policy)

    return DEFAULT_DELAY_POLICY
