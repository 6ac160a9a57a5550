"""Destination and delay policy resolution."""

from datetime import timedelta

from agenda.db.models import DelayPolicy, ServiceLocation
from agenda.services.delay_policy_service import DEFAULT_DELAY_POLICY, resolve_policy
from agenda.services.eta_service import Coordinates
from agenda.services.location_service import LocationResolver, resolve_destination


def _location(db, tenant_id, professional_id=None, lat=-23.5, lng=-46.6, active=True):
    location = ServiceLocation(
        tenant_id=tenant_id,
        professional_id=professional_id,
        latitude=lat,
        longitude=lng,
        is_active=active,
    )
    db.add(location)
    db.commit()
    return location


def test_professional_location_wins(db, tenant, professional):
    _location(db, tenant.id, lat=1.0, lng=1.0)
    _location(db, tenant.id, professional.id, lat=2.0, lng=2.0)

    assert resolve_destination(db, tenant.id, professional.id) == Coordinates(lat=2.0, lng=2.0)


def test_falls_back_to_tenant_location(db, tenant, professional):
    _location(db, tenant.id, professional.id, lat=2.0, lng=2.0, active=False)
    _location(db, tenant.id, lat=1.0, lng=1.0)

    assert resolve_destination(db, tenant.id, professional.id) == Coordinates(lat=1.0, lng=1.0)


def test_location_without_coordinates_is_ignored(db, tenant, professional):
    _location(db, tenant.id, professional.id, lat=None, lng=None)

    assert resolve_destination(db, tenant.id, professional.id) is None


def test_other_tenant_location_is_invisible(db, tenant, professional, make_tenant):
    other = make_tenant("Other")
    _location(db, other.id, lat=1.0, lng=1.0)

    assert resolve_destination(db, tenant.id, professional.id) is None


def test_resolver_caches_per_professional(db, tenant, professional):
    resolver = LocationResolver(db, tenant.id)
    assert resolver.resolve_destination(professional.id) is None

    _location(db, tenant.id, lat=1.0, lng=1.0)

    assert resolver.resolve_destination(professional.id) is None
    assert LocationResolver(db, tenant.id).resolve_destination(professional.id) is not None


def test_default_policy(db, tenant, professional):
    policy = resolve_policy(db, tenant.id, professional.id)

    assert policy == DEFAULT_DELAY_POLICY
    assert policy.max_allowed_delay_min == 10
    assert not policy.fallback_whatsapp_for_professional


def test_policy_precedence(db, tenant, professional):
    db.add(DelayPolicy(tenant_id=tenant.id, professional_id=None, max_allowed_delay_min=15))
    db.commit()
    assert resolve_policy(db, tenant.id, professional.id).max_allowed_delay_min == 15

    db.add(
        DelayPolicy(
            tenant_id=tenant.id,
            professional_id=professional.id,
            max_allowed_delay_min=0,
            fallback_whatsapp_for_professional=True,
        )
    )
    db.commit()
    policy = resolve_policy(db, tenant.id, professional.id)
    assert policy.max_allowed_delay_min == 0
    assert policy.fallback_whatsapp_for_professional


def test_newest_tenant_wide_policy_wins(db, tenant, professional, now):
    # NULL professional_id does not collide in the scope constraint
    db.add(DelayPolicy(tenant_id=tenant.id, max_allowed_delay_min=5, updated_at=now - timedelta(days=1)))
    db.add(DelayPolicy(tenant_id=tenant.id, max_allowed_delay_min=20, updated_at=now))
    db.add(DelayPolicy(tenant_id=tenant.id, max_allowed_delay_min=7, updated_at=now - timedelta(hours=1)))
    db.commit()

    assert resolve_policy(db, tenant.id, professional.id).max_allowed_delay_min == 20
