"""Consent gate, revocation and CSV export."""

import csv
import io
import uuid
from datetime import timedelta

import pytest

from agenda.db.enums import ConsentStatus
from agenda.services.consent_service import (
    CONSENT_CSV_COLUMNS,
    ConsentGate,
    ConsentNotFoundError,
    export_consents_csv,
    get_latest_consent,
    is_consent_active,
    list_consents,
    revoke_consent,
)


def test_latest_consent_is_authoritative(db, now, appointment, grant_consent):
    grant_consent(appointment, updated_at=now - timedelta(minutes=30))
    latest = grant_consent(appointment, status=ConsentStatus.DENIED, updated_at=now - timedelta(minutes=1))

    assert get_latest_consent(db, appointment.tenant_id, appointment.id).id == latest.id
    assert not ConsentGate(db, appointment.tenant_id, now).has_active_consent(appointment.id)


def test_consent_active_rules(db, now, appointment, grant_consent):
    open_ended = grant_consent(appointment)
    assert is_consent_active(open_ended, now)
    assert not is_consent_active(None, now)

    open_ended.expires_at = now
    assert not is_consent_active(open_ended, now)
    open_ended.expires_at = now + timedelta(seconds=1)
    assert is_consent_active(open_ended, now)

    open_ended.consent_status = ConsentStatus.EXPIRED.value
    assert not is_consent_active(open_ended, now)


def test_gate_memoizes_within_a_pass(db, now, appointment, grant_consent):
    gate = ConsentGate(db, appointment.tenant_id, now)
    assert not gate.has_active_consent(appointment.id)

    grant_consent(appointment)

    # Same pass keeps its answer; a new pass sees the grant
    assert not gate.has_active_consent(appointment.id)
    assert ConsentGate(db, appointment.tenant_id, now).has_active_consent(appointment.id)


def test_gate_is_tenant_scoped(db, now, appointment, grant_consent, make_tenant):
    grant_consent(appointment)
    other = make_tenant("Other")

    assert not ConsentGate(db, other.id, now).has_active_consent(appointment.id)


def test_revoke_consent(db, now, appointment, grant_consent):
    consent = grant_consent(appointment)

    revoked = revoke_consent(db, appointment.tenant_id, consent.id, now=now)

    assert revoked.consent_status == "revoked"
    assert revoked.source_channel == "web_dashboard"
    assert revoked.expires_at == now
    assert revoked.updated_at == now
    assert not is_consent_active(revoked, now)


def test_revoke_unknown_or_foreign_consent(db, now, appointment, grant_consent, make_tenant):
    consent = grant_consent(appointment)

    with pytest.raises(ConsentNotFoundError):
        revoke_consent(db, appointment.tenant_id, uuid.uuid4())
    with pytest.raises(ConsentNotFoundError):
        revoke_consent(db, make_tenant("Other").id, consent.id)


def test_list_consents_newest_first(db, now, appointment, grant_consent):
    older = grant_consent(appointment, updated_at=now - timedelta(hours=2))
    newer = grant_consent(appointment, status=ConsentStatus.REVOKED, updated_at=now)

    assert [c.id for c in list_consents(db, appointment.tenant_id, appointment.id)] == [newer.id, older.id]
    assert len(list_consents(db, appointment.tenant_id, appointment.id, limit=1)) == 1


def test_csv_export_format(db, now, appointment, grant_consent):
    consent = grant_consent(appointment, expires_at=now + timedelta(hours=2))

    content = export_consents_csv([consent], "Maria Silva")

    assert content.startswith("\ufeff")
    rows = list(csv.reader(io.StringIO(content.lstrip("\ufeff")), delimiter=";"))
    assert rows[0] == CONSENT_CSV_COLUMNS
    row = dict(zip(rows[0], rows[1]))
    assert row["appointment_id"] == str(appointment.id)
    assert row["client"] == "Maria Silva"
    assert row["consent_status"] == "granted"
    assert row["expires_at"] == (now + timedelta(hours=2)).isoformat()
    assert row["consent_id"] == str(consent.id)


def test_csv_export_neutralizes_formulas(db, appointment, grant_consent):
    consent = grant_consent(appointment)

    content = export_consents_csv([consent], "=HYPERLINK(\"http://x\")")

    rows = list(csv.reader(io.StringIO(content.lstrip("\ufeff")), delimiter=";"))
    assert rows[1][1] == "'=HYPERLINK(\"http://x\")"


def test_csv_export_empty_values(db, appointment, grant_consent):
    consent = grant_consent(appointment)

    content = export_consents_csv([consent], None)

    rows = list(csv.reader(io.StringIO(content.lstrip("\ufeff")), delimiter=";"))
    row = dict(zip(rows[0], rows[1]))
    assert row["client"] == ""
    assert row["expires_at"] == ""
