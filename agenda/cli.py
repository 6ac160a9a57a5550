"""CLI tools for punctuality pipeline operations (cron entry points and bootstrap)."""

from uuid import UUID

import click

from agenda.core.config import settings
from agenda.db.enums import Role
from agenda.db.models import Membership, Tenant, User
from agenda.db.session import SessionLocal
from agenda.schemas.punctuality import RetentionRequest, SchedulerRequest
from agenda.services import dispatch_service, retention_service, scheduler_service


@click.group()
def cli():
    """Agenda punctuality CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Tenant name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option("--admin-email", required=True, help="Admin email address")
@click.option("--admin-name", default="Admin", help="Admin display name")
def create_tenant(name: str, slug: str, admin_email: str, admin_name: str):
    """
    Create a tenant and its first admin user.

    Example:
        python -m agenda.cli create-tenant --name "Clinic" --slug "clinic" --admin-email "admin@clinic.com"
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            return

        if db.query(Tenant).filter(Tenant.slug == slug).first():
            click.echo(f"❌ Tenant with slug '{slug}' already exists")
            return

        email = admin_email.lower().strip()
        if db.query(User).filter(User.email == email).first():
            click.echo(f"❌ User already exists: {email}")
            return

        tenant = Tenant(name=name, slug=slug)
        db.add(tenant)
        db.flush()

        user = User(email=email, display_name=admin_name)
        db.add(user)
        db.flush()

        db.add(Membership(user_id=user.id, tenant_id=tenant.id, role=Role.ADMIN.value))
        db.commit()

        click.echo(f"✓ Created tenant: {name}")
        click.echo(f"  ID: {tenant.id}")
        click.echo(f"  Slug: {slug}")
        click.echo(f"✓ Created admin {email}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """
    Revoke all sessions for a user by bumping their token_version.

    Example:
        python -m agenda.cli revoke-sessions --email "user@example.com"
    """
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            click.echo(f"❌ User not found: {email}")
            return

        old_version = user.token_version
        user.token_version += 1
        db.commit()

        click.echo(f"✓ Revoked all sessions for {email}")
        click.echo(f"  Token version: {old_version} → {user.token_version}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


# =============================================================================
# Pipeline passes (cron)
# =============================================================================


@cli.command()
@click.option("--tenant-id", type=click.UUID, default=None, help="Limit the tick to one tenant")
@click.option("--max-tenants", default=200, type=click.IntRange(1, 500), help="Tenants per tick")
@click.option("--dispatch-limit", default=50, type=click.IntRange(1, 200), help="Rows per dispatcher")
def run_scheduler(tenant_id: UUID | None, max_tenants: int, dispatch_limit: int):
    """
    Run one scheduler tick (monitor + dispatchers per tenant).

    Example:
        python -m agenda.cli run-scheduler
    """
    db = SessionLocal()
    try:
        request = SchedulerRequest(
            tenant_id=tenant_id, max_tenants=max_tenants, dispatch_limit=dispatch_limit
        )
        result = scheduler_service.run_scheduler(db, request, settings)
        click.echo(result.model_dump_json(indent=2))
    finally:
        db.close()


@cli.command()
@click.option("--tenant-id", type=click.UUID, default=None, help="Limit cleanup to one tenant")
@click.option("--max-tenants", default=200, type=click.IntRange(1, 500), help="Tenants per run")
def run_retention(tenant_id: UUID | None, max_tenants: int):
    """
    Purge punctuality data past each tenant's retention windows.

    Example:
        python -m agenda.cli run-retention --tenant-id <uuid>
    """
    db = SessionLocal()
    try:
        result = retention_service.run_retention(
            db, RetentionRequest(tenant_id=tenant_id, max_tenants=max_tenants)
        )
        click.echo(result.model_dump_json(indent=2))
    finally:
        db.close()


@cli.command()
@click.option("--tenant-id", type=click.UUID, default=None, help="Limit to one tenant")
@click.option("--limit", default=50, type=click.IntRange(1, 200), help="Queued rows to process")
def dispatch_push(tenant_id: UUID | None, limit: int):
    """Deliver queued push notifications."""
    db = SessionLocal()
    try:
        result = dispatch_service.dispatch_push(
            db,
            config=dispatch_service.PushDispatchSettings.from_settings(settings),
            limit=limit,
            tenant_id=tenant_id,
        )
        click.echo(result.model_dump_json(indent=2))
    finally:
        db.close()


@cli.command()
@click.option("--tenant-id", type=click.UUID, default=None, help="Limit to one tenant")
@click.option("--limit", default=50, type=click.IntRange(1, 200), help="Queued rows to process")
def dispatch_whatsapp(tenant_id: UUID | None, limit: int):
    """Deliver queued WhatsApp fallback notifications."""
    db = SessionLocal()
    try:
        result = dispatch_service.dispatch_whatsapp(
            db,
            config=dispatch_service.WhatsappDispatchSettings.from_settings(settings),
            limit=limit,
            tenant_id=tenant_id,
        )
        click.echo(result.model_dump_json(indent=2))
    finally:
        db.close()


if __name__ == "__main__":
    cli()
