"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database (schema created and dropped per test)
- Tenant / user / scheduling factories
- JWT session cookies for authenticated tests
- HTTPX AsyncClient bound to the app
"""
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable, Generator

# Must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENV"] = "test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from agenda.core.deps import COOKIE_NAME, get_db
from agenda.core.security import create_session_token
from agenda.db.base import Base
from agenda.db.enums import ConsentStatus, Role
from agenda.db.models import (
    Appointment,
    Client,
    ClientLocationConsent,
    Membership,
    Professional,
    Tenant,
    User,
)
from agenda.db.session import SessionLocal, engine
from agenda.main import app
from agenda.utils.clock import utcnow


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    App code commits freely; isolation comes from dropping the schema.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now() -> datetime:
    return utcnow().replace(microsecond=0)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_tenant(db: Session) -> Callable[..., Tenant]:
    def _make(name: str = "Test Clinic") -> Tenant:
        tenant = Tenant(name=name, slug=f"clinic-{uuid.uuid4().hex[:8]}")
        db.add(tenant)
        db.commit()
        return tenant
    return _make


@pytest.fixture
def tenant(make_tenant) -> Tenant:
    return make_tenant()


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(tenant: Tenant, role: Role = Role.ADMIN, phone: str | None = None, name: str = "Test User") -> User:
        user = User(
            email=f"user-{uuid.uuid4().hex[:8]}@test.com",
            display_name=name,
            phone=phone,
        )
        db.add(user)
        db.flush()
        db.add(Membership(user_id=user.id, tenant_id=tenant.id, role=role.value))
        db.commit()
        return user
    return _make


@pytest.fixture
def admin_user(make_user, tenant: Tenant) -> User:
    return make_user(tenant, Role.ADMIN, name="Admin")


@pytest.fixture
def professional_user(make_user, tenant: Tenant) -> User:
    return make_user(tenant, Role.PROFESSIONAL, phone="+55 (11) 98765-4321", name="Dr. Ana")


@pytest.fixture
def make_professional(db: Session) -> Callable[..., Professional]:
    def _make(tenant: Tenant, user: User | None = None, name: str = "Dr. Ana") -> Professional:
        professional = Professional(tenant_id=tenant.id, user_id=user.id if user else None, name=name)
        db.add(professional)
        db.commit()
        return professional
    return _make


@pytest.fixture
def professional(make_professional, tenant: Tenant, professional_user: User) -> Professional:
    return make_professional(tenant, professional_user)


@pytest.fixture
def make_appointment(db: Session, now: datetime) -> Callable[..., Appointment]:
    def _make(
        tenant: Tenant,
        professional: Professional,
        starts_in_minutes: int = 30,
        status: str = "scheduled",
        client_name: str = "Maria Silva",
    ) -> Appointment:
        client = Client(tenant_id=tenant.id, full_name=client_name)
        db.add(client)
        db.flush()
        appointment = Appointment(
            tenant_id=tenant.id,
            professional_id=professional.id,
            client_id=client.id,
            starts_at=now + timedelta(minutes=starts_in_minutes),
            status=status,
        )
        db.add(appointment)
        db.commit()
        return appointment
    return _make


@pytest.fixture
def appointment(make_appointment, tenant: Tenant, professional: Professional) -> Appointment:
    return make_appointment(tenant, professional)


@pytest.fixture
def grant_consent(db: Session, now: datetime) -> Callable[..., ClientLocationConsent]:
    def _grant(
        appointment: Appointment,
        status: ConsentStatus = ConsentStatus.GRANTED,
        expires_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> ClientLocationConsent:
        consent = ClientLocationConsent(
            tenant_id=appointment.tenant_id,
            appointment_id=appointment.id,
            client_id=appointment.client_id,
            consent_status=status.value,
            consent_text_version="v1",
            source_channel="client_app",
            granted_at=now - timedelta(hours=1),
            expires_at=expires_at,
            created_at=updated_at or now - timedelta(minutes=5),
            updated_at=updated_at or now - timedelta(minutes=5),
        )
        db.add(consent)
        db.commit()
        return consent
    return _grant


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    tenant: Tenant
    token: str
    cookie_name: str = COOKIE_NAME


def make_auth(user: User, tenant: Tenant, role: Role) -> TestAuth:
    token = create_session_token(
        user_id=user.id,
        tenant_id=tenant.id,
        role=role.value,
        token_version=user.token_version,
    )
    return TestAuth(user=user, tenant=tenant, token=token)


@pytest.fixture
def admin_auth(admin_user: User, tenant: Tenant) -> TestAuth:
    return make_auth(admin_user, tenant, Role.ADMIN)


@pytest.fixture
def professional_auth(professional_user: User, tenant: Tenant) -> TestAuth:
    return make_auth(professional_user, tenant, Role.PROFESSIONAL)


# =============================================================================
# Client Fixtures
# =============================================================================

def _client_for(db: Session, auth: TestAuth | None) -> AsyncClient:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    cookies = {auth.cookie_name: auth.token} if auth else None
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies=cookies,
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    )


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client (pipeline triggers use shared secrets)."""
    async with _client_for(db, None) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(db: Session, admin_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """Tenant admin client with JWT cookie and CSRF header."""
    async with _client_for(db, admin_auth) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def professional_client(
    db: Session, professional_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    async with _client_for(db, professional_auth) as c:
        yield c
    app.dependency_overrides.clear()
