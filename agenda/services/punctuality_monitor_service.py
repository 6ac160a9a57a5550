"""
Punctuality monitor orchestrator.

One pass over a tenant's in-scope appointments:
1. ingest caller-supplied snapshots (resolving ETA from coordinates if needed)
2. discover the monitoring set (explicit ids or the active time window)
3. self-refresh ETA from the latest known client coordinates
4. recompute committed state with the two-sample debounce
5. on a committed transition: append an event and queue notifications

Per-appointment failures are captured in the result and never abort the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.core.async_utils import run_async
from agenda.core.config import Settings
from agenda.core.structured_logging import build_log_context
from agenda.db.enums import (
    MONITORED_APPOINTMENT_STATUSES,
    NotificationChannel,
    PunctualityStatus,
)
from agenda.db.models import Appointment, EtaSnapshot, PunctualityEvent
from agenda.schemas.notification_payload import PUSH_ACTIONS, NotificationPayload
from agenda.schemas.punctuality import (
    ItemError,
    MonitorRequest,
    MonitorResult,
    MonitorSnapshotInput,
)
from agenda.services import notification_service
from agenda.services.consent_service import ConsentGate
from agenda.services.delay_policy_service import ResolvedDelayPolicy, resolve_policy
from agenda.services.eta_service import Coordinates, EtaEstimator, EtaResult, EtaSettings
from agenda.services.location_service import LocationResolver
from agenda.services.punctuality_classifier import (
    classify,
    is_late,
    minutes_until,
    notification_type_for_status,
    predicted_delay,
    resolve_committed_status,
)
from agenda.utils.clock import ensure_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorSettings:
    """Monitor orchestrator configuration."""

    dedup_minutes: int = 10
    max_batch: int = 400
    eta: EtaSettings = field(default_factory=EtaSettings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitorSettings":
        return cls(
            dedup_minutes=max(1, settings.PUNCTUALITY_NOTIFICATION_DEDUP_MINUTES),
            max_batch=max(1, settings.PUNCTUALITY_MONITOR_MAX_BATCH),
            eta=EtaSettings.from_settings(settings),
        )


def discover_appointment_ids(
    db: Session,
    tenant_id: UUID,
    now: datetime,
    window_before_min: int,
    window_after_min: int,
    limit: int,
) -> list[UUID]:
    """Monitored appointments starting inside [now - before, now + after], soonest first."""
    rows = (
        db.query(Appointment.id)
        .filter(
            Appointment.tenant_id == tenant_id,
            Appointment.status.in_(MONITORED_APPOINTMENT_STATUSES),
            Appointment.starts_at >= now - timedelta(minutes=window_before_min),
            Appointment.starts_at <= now + timedelta(minutes=window_after_min),
        )
        .order_by(Appointment.starts_at.asc())
        .limit(limit)
        .all()
    )
    return [row.id for row in rows]


def latest_snapshots(
    db: Session, tenant_id: UUID, appointment_id: UUID, limit: int = 2
) -> list[EtaSnapshot]:
    """Newest first."""
    return (
        db.query(EtaSnapshot)
        .filter(
            EtaSnapshot.tenant_id == tenant_id,
            EtaSnapshot.appointment_id == appointment_id,
        )
        .order_by(EtaSnapshot.captured_at.desc(), EtaSnapshot.created_at.desc())
        .limit(limit)
        .all()
    )


def latest_snapshot_with_coords(
    db: Session, tenant_id: UUID, appointment_id: UUID
) -> EtaSnapshot | None:
    return (
        db.query(EtaSnapshot)
        .filter(
            EtaSnapshot.tenant_id == tenant_id,
            EtaSnapshot.appointment_id == appointment_id,
            EtaSnapshot.client_lat.isnot(None),
            EtaSnapshot.client_lng.isnot(None),
        )
        .order_by(EtaSnapshot.captured_at.desc(), EtaSnapshot.created_at.desc())
        .first()
    )


def has_tracked_state(appointment: Appointment) -> bool:
    return (
        (appointment.punctuality_status or PunctualityStatus.NO_DATA.value)
        != PunctualityStatus.NO_DATA.value
        or appointment.punctuality_eta_min is not None
        or appointment.punctuality_predicted_delay_min is not None
    )


class PunctualityMonitor:
    """
    A single orchestration pass for one tenant.

    Holds the pass-scoped consent and location caches; build a new
    instance per pass.
    """

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        config: MonitorSettings,
        estimator: EtaEstimator | None = None,
        now: datetime | None = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.config = config
        self.estimator = estimator or EtaEstimator(config.eta)
        self.now = now or utcnow()
        self.consent = ConsentGate(db, tenant_id, self.now)
        self.locations = LocationResolver(db, tenant_id)

    def run(self, request: MonitorRequest) -> MonitorResult:
        result = MonitorResult(tenant_id=self.tenant_id)
        touched: dict[UUID, None] = {}

        for snapshot_input in request.snapshots:
            try:
                appointment_id = self._ingest(snapshot_input, request.source, result)
            except Exception as exc:
                self.db.rollback()
                logger.exception(
                    "Snapshot ingest failed",
                    extra=self._log_context(snapshot_input.appointment_id, request.source),
                )
                result.errors.append(ItemError(id=str(snapshot_input.appointment_id), error=str(exc)))
                continue
            if appointment_id:
                touched[appointment_id] = None

        if request.appointment_id:
            touched[request.appointment_id] = None

        if not touched:
            for appointment_id in discover_appointment_ids(
                self.db,
                self.tenant_id,
                self.now,
                request.window_before_min,
                request.window_after_min,
                self.config.max_batch,
            ):
                touched[appointment_id] = None

        if not touched:
            return result

        appointments = (
            self.db.query(Appointment)
            .filter(
                Appointment.tenant_id == self.tenant_id,
                Appointment.id.in_(list(touched)),
            )
            .order_by(Appointment.starts_at.asc())
            .all()
        )
        result.processed = len(appointments)

        for appointment in appointments:
            appointment_id = appointment.id
            try:
                self._process(appointment, request.source, result)
            except Exception as exc:
                self.db.rollback()
                logger.exception(
                    "Punctuality recompute failed",
                    extra=self._log_context(appointment_id, request.source),
                )
                result.errors.append(ItemError(id=str(appointment_id), error=str(exc)))

        logger.info(
            "Punctuality monitor pass: processed=%s changed=%s notifications=%s errors=%s",
            result.processed,
            result.changed,
            result.notifications_queued + result.push_queued + result.whatsapp_queued,
            len(result.errors),
            extra=build_log_context(tenant_id=self.tenant_id, source=request.source),
        )
        return result

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def _ingest(
        self, snapshot_input: MonitorSnapshotInput, source: str, result: MonitorResult
    ) -> UUID | None:
        appointment = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.id == snapshot_input.appointment_id,
        ).first()
        if not appointment:
            result.skipped_unknown_appointment += 1
            return None

        if not self.consent.has_active_consent(appointment.id):
            result.skipped_no_consent += 1
            return None

        policy = resolve_policy(self.db, self.tenant_id, appointment.professional_id)
        captured_at = ensure_aware(snapshot_input.captured_at) if snapshot_input.captured_at else self.now
        minutes_to_start = minutes_until(captured_at, appointment.starts_at)

        eta_minutes = snapshot_input.eta_minutes
        provider = snapshot_input.provider or None
        traffic_level = snapshot_input.traffic_level or None
        raw_response = snapshot_input.raw_response or {}

        if eta_minutes is None and snapshot_input.has_client_coords:
            destination = self.locations.resolve_destination(appointment.professional_id)
            if destination:
                origin = Coordinates(lat=snapshot_input.client_lat, lng=snapshot_input.client_lng)
                estimate = self._estimate(origin, destination, appointment.id, source)
                if estimate:
                    eta_minutes = estimate.eta_minutes
                    provider = estimate.provider
                    traffic_level = estimate.traffic_level
                    raw_response = estimate.raw_response
                elif self.estimator.enabled:
                    provider = provider or self.estimator.failure_marker

        self.db.add(
            EtaSnapshot(
                tenant_id=self.tenant_id,
                appointment_id=appointment.id,
                captured_at=captured_at,
                eta_minutes=eta_minutes,
                minutes_to_start=minutes_to_start,
                predicted_arrival_delay=predicted_delay(eta_minutes, minutes_to_start),
                status=classify(eta_minutes, minutes_to_start, policy.max_allowed_delay_min).value,
                client_lat=snapshot_input.client_lat,
                client_lng=snapshot_input.client_lng,
                traffic_level=traffic_level,
                provider=provider,
                raw_response=raw_response,
            )
        )
        self.db.commit()
        result.snapshots_ingested += 1
        return appointment.id

    # -------------------------------------------------------------------------
    # Refresh + recompute
    # -------------------------------------------------------------------------

    def _process(self, appointment: Appointment, source: str, result: MonitorResult) -> None:
        if not self.consent.has_active_consent(appointment.id):
            if has_tracked_state(appointment):
                self._reset(appointment)
                result.reset_no_consent += 1
            return

        policy = resolve_policy(self.db, self.tenant_id, appointment.professional_id)
        if self._refresh(appointment, policy, source):
            result.refresh_snapshots += 1

        snapshots = latest_snapshots(self.db, self.tenant_id, appointment.id)
        latest = snapshots[0] if snapshots else None

        current = PunctualityStatus(appointment.punctuality_status or PunctualityStatus.NO_DATA.value)
        committed = resolve_committed_status(current, [snapshot.status for snapshot in snapshots])
        eta_minutes = latest.eta_minutes if latest else None
        delay = latest.predicted_arrival_delay if latest else None

        status_changed = committed != current
        numeric_changed = (
            appointment.punctuality_eta_min != eta_minutes
            or appointment.punctuality_predicted_delay_min != delay
        )
        if not status_changed and not numeric_changed:
            return

        appointment.punctuality_status = committed.value
        appointment.punctuality_eta_min = eta_minutes
        appointment.punctuality_predicted_delay_min = delay
        appointment.punctuality_last_calculated_at = self.now
        result.updated += 1

        if not status_changed:
            self.db.commit()
            return

        minutes_to_start = minutes_until(self.now, appointment.starts_at)
        self.db.add(
            PunctualityEvent(
                tenant_id=self.tenant_id,
                appointment_id=appointment.id,
                old_status=current.value,
                new_status=committed.value,
                eta_minutes=eta_minutes,
                minutes_to_start=minutes_to_start,
                predicted_arrival_delay=delay,
                max_allowed_delay=policy.max_allowed_delay_min,
                source=source,
                payload={
                    "appointment_id": str(appointment.id),
                    "old_status": current.value,
                    "new_status": committed.value,
                    "eta_minutes": eta_minutes,
                    "minutes_to_start": minutes_to_start,
                    "predicted_arrival_delay": delay,
                    "max_allowed_delay": policy.max_allowed_delay_min,
                    "occurred_at": self.now.isoformat(),
                },
                occurred_at=self.now,
            )
        )
        self.db.commit()
        result.changed += 1

        logger.info(
            "Punctuality status %s -> %s",
            current.value,
            committed.value,
            extra=self._log_context(appointment.id, source),
        )
        self._queue_notifications(appointment.id, committed, eta_minutes, delay, policy, source, result)

    def _reset(self, appointment: Appointment) -> None:
        """Consent no longer active: blank tracked state regardless of history."""
        appointment.punctuality_status = PunctualityStatus.NO_DATA.value
        appointment.punctuality_eta_min = None
        appointment.punctuality_predicted_delay_min = None
        appointment.punctuality_last_calculated_at = self.now
        self.db.commit()

    def _refresh(self, appointment: Appointment, policy: ResolvedDelayPolicy, source: str) -> bool:
        """One fresh ETA from the latest client coordinates. Persists only a successful estimate."""
        if not self.estimator.enabled:
            return False
        coords_snapshot = latest_snapshot_with_coords(self.db, self.tenant_id, appointment.id)
        if coords_snapshot is None:
            return False
        destination = self.locations.resolve_destination(appointment.professional_id)
        if destination is None:
            return False

        origin = Coordinates(lat=float(coords_snapshot.client_lat), lng=float(coords_snapshot.client_lng))
        estimate = self._estimate(origin, destination, appointment.id, source)
        if estimate is None:
            return False

        minutes_to_start = minutes_until(self.now, appointment.starts_at)
        self.db.add(
            EtaSnapshot(
                tenant_id=self.tenant_id,
                appointment_id=appointment.id,
                captured_at=self.now,
                eta_minutes=estimate.eta_minutes,
                minutes_to_start=minutes_to_start,
                predicted_arrival_delay=predicted_delay(estimate.eta_minutes, minutes_to_start),
                status=classify(
                    estimate.eta_minutes, minutes_to_start, policy.max_allowed_delay_min
                ).value,
                client_lat=origin.lat,
                client_lng=origin.lng,
                traffic_level=estimate.traffic_level,
                provider=estimate.provider,
                raw_response=estimate.raw_response,
            )
        )
        self.db.commit()
        return True

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _queue_notifications(
        self,
        appointment_id: UUID,
        status: PunctualityStatus,
        eta_minutes: int | None,
        delay: int | None,
        policy: ResolvedDelayPolicy,
        source: str,
        result: MonitorResult,
    ) -> None:
        notification_type = notification_type_for_status(status)
        if notification_type is None:
            return

        base = {
            "appointment_id": appointment_id,
            "status": status.value,
            "eta_minutes": eta_minutes,
            "predicted_arrival_delay": delay,
            "max_allowed_delay": policy.max_allowed_delay_min,
            "source": source,
        }

        def queue(channel: NotificationChannel, payload: NotificationPayload) -> bool:
            return notification_service.queue_notification(
                self.db,
                tenant_id=self.tenant_id,
                appointment_id=appointment_id,
                channel=channel,
                notification_type=notification_type,
                payload=payload,
                now=self.now,
                dedup_minutes=self.config.dedup_minutes,
            ) is not None

        if queue(NotificationChannel.IN_APP, NotificationPayload(**base)):
            result.notifications_queued += 1

        if not is_late(status):
            return

        push_payload = NotificationPayload(
            **base,
            priority="high" if status == PunctualityStatus.LATE_CRITICAL else "normal",
            actions=list(PUSH_ACTIONS),
        )
        if queue(NotificationChannel.PUSH, push_payload):
            result.push_queued += 1

        if policy.fallback_whatsapp_for_professional:
            whatsapp_payload = NotificationPayload(**base, fallback_whatsapp_for_professional=True)
            if queue(NotificationChannel.WHATSAPP, whatsapp_payload):
                result.whatsapp_queued += 1

    # -------------------------------------------------------------------------

    def _estimate(
        self, origin: Coordinates, destination: Coordinates, appointment_id: UUID, source: str
    ) -> EtaResult | None:
        return run_async(
            self.estimator.estimate_eta(
                origin, destination, log_extra=self._log_context(appointment_id, source)
            )
        )

    def _log_context(self, appointment_id: UUID | None, source: str | None) -> dict:
        return build_log_context(
            tenant_id=self.tenant_id,
            appointment_id=appointment_id,
            provider=self.config.eta.provider,
            source=source,
        )


def run_monitor(
    db: Session,
    tenant_id: UUID,
    request: MonitorRequest,
    config: MonitorSettings,
    estimator: EtaEstimator | None = None,
    now: datetime | None = None,
) -> MonitorResult:
    """Run one monitor pass for a tenant."""
    return PunctualityMonitor(db, tenant_id, config, estimator=estimator, now=now).run(request)
