"""Service location resolution (ETA destination)."""

from __future__ import annotations

import math
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.db.models import ServiceLocation
from agenda.services.eta_service import Coordinates


def _coordinates(location: ServiceLocation | None) -> Coordinates | None:
    if location is None or location.latitude is None or location.longitude is None:
        return None
    lat, lng = float(location.latitude), float(location.longitude)
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    return Coordinates(lat=lat, lng=lng)


def _latest_active_location(
    db: Session, tenant_id: UUID, professional_id: UUID | None
) -> ServiceLocation | None:
    query = db.query(ServiceLocation).filter(
        ServiceLocation.tenant_id == tenant_id,
        ServiceLocation.is_active.is_(True),
    )
    if professional_id is None:
        query = query.filter(ServiceLocation.professional_id.is_(None))
    else:
        query = query.filter(ServiceLocation.professional_id == professional_id)
    return query.order_by(ServiceLocation.updated_at.desc()).first()


def resolve_destination(
    db: Session, tenant_id: UUID, professional_id: UUID
) -> Coordinates | None:
    """Professional-specific active location, else tenant-wide, else None."""
    resolved = _coordinates(_latest_active_location(db, tenant_id, professional_id))
    if resolved is None:
        resolved = _coordinates(_latest_active_location(db, tenant_id, None))
    return resolved


class LocationResolver:
    """Pass-scoped destination cache keyed by professional."""

    def __init__(self, db: Session, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id
        self._cache: dict[UUID, Coordinates | None] = {}

    def resolve_destination(self, professional_id: UUID) -> Coordinates | None:
        if professional_id in self._cache:
            return self._cache[professional_id]
        resolved = resolve_destination(self.db, self.tenant_id, professional_id)
        self._cache[professional_id] = resolved
        return resolved
