"""Baseline migration - tenants, scheduling and punctuality pipeline tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates the tenant/auth tables, the calendar tables read by the monitor,
and every table written by the punctuality pipeline.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Enable required extensions
    # ==========================================================================
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenants, users, memberships
    # ==========================================================================
    op.execute('''
        CREATE TABLE tenants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/Sao_Paulo',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            phone VARCHAR(40),
            token_version INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE memberships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            role VARCHAR(50) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_memberships_user UNIQUE (user_id)
        )
    ''')
    op.execute('CREATE INDEX idx_memberships_tenant ON memberships(tenant_id)')

    # ==========================================================================
    # Calendar (read by the monitor; punctuality_* columns written by it)
    # ==========================================================================
    op.execute('''
        CREATE TABLE professionals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_professionals_tenant ON professionals(tenant_id)')

    op.execute('''
        CREATE TABLE clients (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            full_name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_clients_tenant ON clients(tenant_id)')

    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            professional_id UUID NOT NULL REFERENCES professionals(id) ON DELETE CASCADE,
            client_id UUID REFERENCES clients(id) ON DELETE SET NULL,
            starts_at TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            punctuality_status VARCHAR(20) NOT NULL DEFAULT 'no_data',
            punctuality_eta_min INTEGER,
            punctuality_predicted_delay_min INTEGER,
            punctuality_last_calculated_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_appointments_tenant_starts ON appointments(tenant_id, starts_at)')
    op.execute('CREATE INDEX idx_appointments_status_starts ON appointments(status, starts_at)')

    op.execute('''
        CREATE TABLE service_locations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            professional_id UUID REFERENCES professionals(id) ON DELETE CASCADE,
            label VARCHAR(120),
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            is_active BOOLEAN NOT NULL DEFAULT true,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_service_locations_lookup
        ON service_locations(tenant_id, professional_id, is_active)
    ''')

    # ==========================================================================
    # Punctuality policy and consent
    # ==========================================================================
    op.execute('''
        CREATE TABLE delay_policies (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            professional_id UUID REFERENCES professionals(id) ON DELETE CASCADE,
            max_allowed_delay_min INTEGER NOT NULL DEFAULT 10,
            fallback_whatsapp_for_professional BOOLEAN NOT NULL DEFAULT false,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_delay_policies_scope UNIQUE (tenant_id, professional_id),
            CONSTRAINT ck_delay_policies_non_negative CHECK (max_allowed_delay_min >= 0)
        )
    ''')

    op.execute('''
        CREATE TABLE client_location_consents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            client_id UUID REFERENCES clients(id) ON DELETE SET NULL,
            consent_status VARCHAR(20) NOT NULL,
            consent_text_version VARCHAR(40),
            source_channel VARCHAR(40),
            granted_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_consents_appointment_updated
        ON client_location_consents(tenant_id, appointment_id, updated_at)
    ''')
    op.execute('CREATE INDEX idx_consents_expires ON client_location_consents(tenant_id, expires_at)')

    # ==========================================================================
    # Snapshots and events (append-only)
    # ==========================================================================
    op.execute('''
        CREATE TABLE appointment_eta_snapshots (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            captured_at TIMESTAMPTZ NOT NULL,
            eta_minutes INTEGER,
            minutes_to_start INTEGER NOT NULL,
            predicted_arrival_delay INTEGER,
            status VARCHAR(20) NOT NULL,
            client_lat DOUBLE PRECISION,
            client_lng DOUBLE PRECISION,
            traffic_level VARCHAR(20),
            provider VARCHAR(60),
            raw_response JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_eta_snapshots_appointment_captured
        ON appointment_eta_snapshots(tenant_id, appointment_id, captured_at)
    ''')
    op.execute('''
        CREATE INDEX idx_eta_snapshots_tenant_captured
        ON appointment_eta_snapshots(tenant_id, captured_at)
    ''')

    op.execute('''
        CREATE TABLE punctuality_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            old_status VARCHAR(20) NOT NULL,
            new_status VARCHAR(20) NOT NULL,
            eta_minutes INTEGER,
            minutes_to_start INTEGER,
            predicted_arrival_delay INTEGER,
            max_allowed_delay INTEGER NOT NULL,
            source VARCHAR(40) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            occurred_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_punctuality_events_appointment
        ON punctuality_events(tenant_id, appointment_id, occurred_at)
    ''')
    op.execute('''
        CREATE INDEX idx_punctuality_events_tenant_occurred
        ON punctuality_events(tenant_id, occurred_at)
    ''')

    # ==========================================================================
    # Notifications and delivery targets
    # ==========================================================================
    op.execute('''
        CREATE TABLE notification_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            channel VARCHAR(20) NOT NULL,
            type VARCHAR(50) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'queued',
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            provider_message_id VARCHAR(255),
            dedupe_key VARCHAR(64) UNIQUE,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_notification_log_dispatch
        ON notification_log(channel, status, created_at)
    ''')
    op.execute('''
        CREATE INDEX idx_notification_log_dedupe_window
        ON notification_log(tenant_id, appointment_id, channel, type, created_at)
    ''')
    op.execute('''
        CREATE INDEX idx_notification_log_tenant_created
        ON notification_log(tenant_id, created_at)
    ''')

    op.execute('''
        CREATE TABLE device_push_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            token TEXT NOT NULL,
            provider VARCHAR(20) NOT NULL DEFAULT 'expo',
            platform VARCHAR(20),
            active BOOLEAN NOT NULL DEFAULT true,
            last_seen_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_device_push_tokens_user
        ON device_push_tokens(tenant_id, user_id, active, last_seen_at)
    ''')

    op.execute('''
        CREATE TABLE whatsapp_channel_settings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            professional_id UUID REFERENCES professionals(id) ON DELETE CASCADE,
            phone_number_id VARCHAR(64) NOT NULL,
            active BOOLEAN NOT NULL DEFAULT true,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_whatsapp_channel_settings_lookup
        ON whatsapp_channel_settings(tenant_id, professional_id, active)
    ''')

    # ==========================================================================
    # Retention
    # ==========================================================================
    op.execute('''
        CREATE TABLE punctuality_retention_policies (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            keep_eta_snapshots_days INTEGER NOT NULL DEFAULT 30,
            keep_punctuality_events_days INTEGER NOT NULL DEFAULT 180,
            keep_notification_log_days INTEGER NOT NULL DEFAULT 90,
            delete_expired_consents_after_days INTEGER NOT NULL DEFAULT 30,
            enabled BOOLEAN NOT NULL DEFAULT true,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_punctuality_retention_tenant UNIQUE (tenant_id),
            CONSTRAINT ck_punctuality_retention_days CHECK (
                keep_eta_snapshots_days >= 1 AND keep_punctuality_events_days >= 1
                AND keep_notification_log_days >= 1 AND delete_expired_consents_after_days >= 0
            )
        )
    ''')


def downgrade() -> None:
    """Drop all tables (reverse dependency order)."""
    for table in (
        'punctuality_retention_policies',
        'whatsapp_channel_settings',
        'device_push_tokens',
        'notification_log',
        'punctuality_events',
        'appointment_eta_snapshots',
        'client_location_consents',
        'delay_policies',
        'service_locations',
        'appointments',
        'clients',
        'professionals',
        'memberships',
        'users',
        'tenants',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
