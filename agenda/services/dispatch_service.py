"""
Notification dispatchers (push and WhatsApp).

Both pull queued punctuality notifications for their channel (oldest first),
resolve the professional's delivery target, send once, and record the
outcome. A missing target or provider failure marks the row failed with a
machine-readable reason; failed is terminal. Provider "none" simulates a
successful send so the pipeline runs without credentials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from agenda.core.async_utils import run_async
from agenda.core.config import Settings
from agenda.core.structured_logging import build_log_context
from agenda.db.enums import (
    DispatchFailureReason,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    PushProviderName,
    WhatsappProviderName,
)
from agenda.db.models import (
    Appointment,
    Client,
    DevicePushToken,
    NotificationLog,
    Professional,
    User,
    WhatsappChannelSetting,
)
from agenda.schemas.notification_payload import DispatchRecord, NotificationPayload
from agenda.schemas.punctuality import DispatchResult, ItemError
from agenda.services import notification_service
from agenda.services.push_provider import ExpoPushProvider, PushSendResult
from agenda.services.whatsapp_provider import MetaWhatsappProvider, WhatsappSendResult
from agenda.utils.clock import utcnow
from agenda.utils.normalization import normalize_whatsapp_number

logger = logging.getLogger(__name__)

MAX_DEVICE_TOKENS = 5
MESSAGE_PREVIEW_CHARS = 300
MESSAGE_BRAND = "[Agenda]"


@dataclass(frozen=True)
class PushDispatchSettings:
    provider: str = PushProviderName.NONE.value
    expo_access_token: str = ""
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushDispatchSettings":
        return cls(
            provider=(settings.PUSH_PROVIDER or "none").strip().lower(),
            expo_access_token=settings.EXPO_ACCESS_TOKEN.strip(),
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class WhatsappDispatchSettings:
    provider: str = WhatsappProviderName.NONE.value
    access_token: str = ""
    api_version: str = "v22.0"
    default_phone_number_id: str = ""
    timeout_seconds: float = 10.0
    message_timezone: str = "America/Sao_Paulo"

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsappDispatchSettings":
        return cls(
            provider=(settings.WHATSAPP_DISPATCH_PROVIDER or "none").strip().lower(),
            access_token=settings.WHATSAPP_ACCESS_TOKEN.strip(),
            api_version=settings.WHATSAPP_API_VERSION.strip() or "v22.0",
            default_phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID.strip(),
            timeout_seconds=settings.WHATSAPP_TIMEOUT_SECONDS,
            message_timezone=settings.WHATSAPP_MESSAGE_TIMEZONE,
        )


@dataclass
class AppointmentTarget:
    appointment: Appointment
    professional: Professional
    client: Client | None

    @property
    def client_name(self) -> str | None:
        return self.client.full_name if self.client else None


# =============================================================================
# Shared helpers
# =============================================================================


def load_appointment_target(db: Session, notification: NotificationLog) -> AppointmentTarget | None:
    row = (
        db.query(Appointment, Professional, Client)
        .join(Professional, Professional.id == Appointment.professional_id)
        .outerjoin(Client, Client.id == Appointment.client_id)
        .filter(
            Appointment.tenant_id == notification.tenant_id,
            Appointment.id == notification.appointment_id,
        )
        .first()
    )
    if row is None:
        return None
    appointment, professional, client = row
    return AppointmentTarget(appointment=appointment, professional=professional, client=client)


def _finalize(
    db: Session,
    notification: NotificationLog,
    payload: NotificationPayload,
    record: DispatchRecord,
    now: datetime,
) -> bool:
    """
    Record the attempt and move queued -> sent|failed.

    Guarded on status so a row is only ever transitioned once. Returns
    False when another dispatcher already finalized it.
    """
    payload.record_dispatch(record)
    values = {
        NotificationLog.status: NotificationStatus.SENT.value
        if record.outcome == "sent"
        else NotificationStatus.FAILED.value,
        NotificationLog.payload: payload.to_json(),
        NotificationLog.updated_at: now,
    }
    if record.provider_message_id:
        values[NotificationLog.provider_message_id] = record.provider_message_id

    updated = (
        db.query(NotificationLog)
        .filter(
            NotificationLog.id == notification.id,
            NotificationLog.status == NotificationStatus.QUEUED.value,
        )
        .update(values, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def _failure(
    channel: NotificationChannel,
    provider: str,
    reason: DispatchFailureReason,
    now: datetime,
    **extra,
) -> DispatchRecord:
    return DispatchRecord(
        channel=channel.value,
        provider=provider,
        outcome="failed",
        attempted_at=now,
        reason=reason.value,
        **extra,
    )


def _run_dispatch(
    db: Session,
    channel: NotificationChannel,
    provider_name: str,
    limit: int,
    tenant_id: UUID | None,
    handle: Callable[[NotificationLog], tuple[NotificationPayload, DispatchRecord]],
    now: datetime,
) -> DispatchResult:
    rows = notification_service.list_queued(db, channel, limit, tenant_id=tenant_id)
    result = DispatchResult(provider=provider_name, processed=len(rows))

    for row in rows:
        row_id, row_tenant_id = row.id, row.tenant_id
        log_extra = build_log_context(
            tenant_id=row_tenant_id,
            notification_id=row_id,
            channel=channel.value,
            provider=provider_name,
        )
        try:
            payload, record = handle(row)
            finalized = _finalize(db, row, payload, record, now)
        except Exception as exc:
            db.rollback()
            logger.exception("Notification dispatch failed unexpectedly", extra=log_extra)
            result.errors.append(ItemError(id=str(row_id), error=str(exc)))
            continue

        if not finalized:
            logger.info("Notification already dispatched elsewhere", extra=log_extra)
            continue
        if record.outcome == "sent":
            result.sent += 1
        else:
            result.failed += 1
            logger.warning("Notification dispatch failed: %s", record.reason, extra=log_extra)

    if rows:
        logger.info(
            "Dispatch pass: processed=%s sent=%s failed=%s",
            result.processed,
            result.sent,
            result.failed,
            extra=build_log_context(tenant_id=tenant_id, channel=channel.value, provider=provider_name),
        )
    return result


def _number_or_none(value: int | float | None) -> int | None:
    if value is None:
        return None
    return max(0, round(value))


# =============================================================================
# Push
# =============================================================================


def build_push_content(
    notification_type: str, payload: NotificationPayload, client_name: str | None
) -> tuple[str, str, str]:
    """(title, body, priority) for a punctuality notification."""
    client = client_name or "Client"
    delay = payload.predicted_arrival_delay
    eta = payload.eta_minutes

    if notification_type == NotificationType.PUNCTUALITY_LATE_CRITICAL.value:
        return (
            "Critical delay expected",
            f"{client} is expected to arrive {delay if delay is not None else '?'} min late.",
            "high",
        )
    if notification_type == NotificationType.PUNCTUALITY_LATE_OK.value:
        return (
            "Delay expected",
            f"{client} is expected to arrive {delay if delay is not None else '?'} min late. "
            f"ETA {eta if eta is not None else '?'} min.",
            "normal",
        )
    return ("Punctuality update", f"{client} is on time.", "normal")


def active_device_tokens(db: Session, tenant_id: UUID, user_id: UUID) -> list[DevicePushToken]:
    """Most recently seen first."""
    return (
        db.query(DevicePushToken)
        .filter(
            DevicePushToken.tenant_id == tenant_id,
            DevicePushToken.user_id == user_id,
            DevicePushToken.active.is_(True),
        )
        .order_by(DevicePushToken.last_seen_at.desc())
        .limit(MAX_DEVICE_TOKENS)
        .all()
    )


def _send_push(
    provider: ExpoPushProvider,
    config: PushDispatchSettings,
    token: str,
    title: str,
    body: str,
    data: dict,
    priority: str,
) -> PushSendResult:
    """One send, bounded by the configured timeout as a whole."""
    try:
        return run_async(
            provider.send(token, title, body, data, priority), timeout=config.timeout_seconds
        )
    except TimeoutError:
        return PushSendResult(
            ok=False, error=f"Expo send timed out after {config.timeout_seconds}s"
        )


def dispatch_push(
    db: Session,
    *,
    config: PushDispatchSettings,
    limit: int = 50,
    tenant_id: UUID | None = None,
    provider: ExpoPushProvider | None = None,
    now: datetime | None = None,
) -> DispatchResult:
    """Deliver queued push notifications."""
    now = now or utcnow()
    channel = NotificationChannel.PUSH
    if provider is None and config.provider == PushProviderName.EXPO.value:
        provider = ExpoPushProvider(config.expo_access_token, timeout=config.timeout_seconds)

    def handle(row: NotificationLog) -> tuple[NotificationPayload, DispatchRecord]:
        payload = notification_service.load_payload(row)
        target = load_appointment_target(db, row)
        user_id = target.professional.user_id if target else None
        if not user_id:
            return payload, _failure(
                channel, config.provider, DispatchFailureReason.PROFESSIONAL_USER_NOT_FOUND, now
            )

        tokens = active_device_tokens(db, row.tenant_id, user_id)
        if not tokens:
            return payload, _failure(
                channel, config.provider, DispatchFailureReason.NO_ACTIVE_DEVICE_TOKEN, now
            )

        if config.provider == PushProviderName.NONE.value:
            return payload, DispatchRecord(
                channel=channel.value,
                provider=config.provider,
                outcome="sent",
                attempted_at=now,
                provider_message_id=f"mock-{row.id}",
                simulated=True,
            )

        title, body, priority = build_push_content(row.type, payload, target.client_name)
        data = {
            **payload.model_dump(
                mode="json",
                exclude={"push_dispatch", "whatsapp_dispatch", "dispatch_history"},
                exclude_none=True,
            ),
            "appointment_id": str(row.appointment_id),
            "type": row.type,
        }

        last_result = None
        for token in tokens:
            if provider is None or not provider.supports(token.provider):
                continue
            last_result = _send_push(provider, config, token.token, title, body, data, priority)
            if last_result.ok:
                return payload, DispatchRecord(
                    channel=channel.value,
                    provider=config.provider,
                    outcome="sent",
                    attempted_at=now,
                    provider_message_id=last_result.provider_message_id,
                    raw=last_result.raw,
                )

        return payload, _failure(
            channel,
            config.provider,
            DispatchFailureReason.PROVIDER_SEND_FAILED,
            now,
            error=last_result.error if last_result else "no_supported_device_token",
            raw=last_result.raw if last_result else None,
        )

    return _run_dispatch(db, channel, config.provider, limit, tenant_id, handle, now)


# =============================================================================
# WhatsApp
# =============================================================================


def _send_whatsapp(
    provider: MetaWhatsappProvider,
    config: WhatsappDispatchSettings,
    to: str,
    message: str,
    phone_number_id: str,
) -> WhatsappSendResult:
    try:
        return run_async(
            provider.send_text(to, message, phone_number_id), timeout=config.timeout_seconds
        )
    except TimeoutError:
        return WhatsappSendResult(error=f"Meta send timed out after {config.timeout_seconds}s")


def format_starts_at(starts_at: datetime, timezone_name: str) -> str:
    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
    return starts_at.astimezone(zone).strftime("%d/%m/%Y %H:%M")


def build_whatsapp_message(
    notification_type: str,
    payload: NotificationPayload,
    target: AppointmentTarget,
    timezone_name: str,
) -> str:
    client = target.client_name or "Client"
    professional = target.professional.name or "Professional"
    starts_at = format_starts_at(target.appointment.starts_at, timezone_name)
    delay = _number_or_none(payload.predicted_arrival_delay)
    eta = _number_or_none(payload.eta_minutes)
    delay_text = "n/a" if delay is None else delay
    eta_text = "n/a" if eta is None else eta

    if notification_type == NotificationType.PUNCTUALITY_LATE_CRITICAL.value:
        return (
            f"{MESSAGE_BRAND}\n"
            f"Critical delay alert for the appointment at {starts_at}.\n"
            f"Client: {client}\n"
            f"Expected delay: {delay_text} min.\n"
            f"Suggested action: consider rescheduling."
        )
    if notification_type == NotificationType.PUNCTUALITY_LATE_OK.value:
        return (
            f"{MESSAGE_BRAND}\n"
            f"Delay alert for the appointment at {starts_at}.\n"
            f"Client: {client}\n"
            f"Expected delay: {delay_text} min.\n"
            f"Current ETA: {eta_text} min."
        )
    return (
        f"{MESSAGE_BRAND}\n"
        f"{client} is on time for the appointment at {starts_at} with {professional}."
    )


def resolve_sending_number(
    db: Session, tenant_id: UUID, professional_id: UUID, default_phone_number_id: str
) -> str | None:
    """Professional-specific active number, else tenant-wide, else the configured default."""
    base = db.query(WhatsappChannelSetting).filter(
        WhatsappChannelSetting.tenant_id == tenant_id,
        WhatsappChannelSetting.active.is_(True),
    )
    setting = (
        base.filter(WhatsappChannelSetting.professional_id == professional_id)
        .order_by(WhatsappChannelSetting.updated_at.desc())
        .first()
    )
    if setting is None:
        setting = (
            base.filter(WhatsappChannelSetting.professional_id.is_(None))
            .order_by(WhatsappChannelSetting.updated_at.desc())
            .first()
        )
    phone_number_id = (setting.phone_number_id if setting else default_phone_number_id) or ""
    return phone_number_id.strip() or None


def dispatch_whatsapp(
    db: Session,
    *,
    config: WhatsappDispatchSettings,
    limit: int = 50,
    tenant_id: UUID | None = None,
    provider: MetaWhatsappProvider | None = None,
    now: datetime | None = None,
) -> DispatchResult:
    """Deliver queued WhatsApp fallback notifications to professionals."""
    now = now or utcnow()
    channel = NotificationChannel.WHATSAPP
    if provider is None and config.provider == WhatsappProviderName.META.value:
        provider = MetaWhatsappProvider(
            config.access_token, api_version=config.api_version, timeout=config.timeout_seconds
        )

    def handle(row: NotificationLog) -> tuple[NotificationPayload, DispatchRecord]:
        payload = notification_service.load_payload(row)
        target = load_appointment_target(db, row)
        if not target or not target.professional.user_id:
            return payload, _failure(
                channel, config.provider, DispatchFailureReason.PROFESSIONAL_TARGET_NOT_FOUND, now
            )

        user = db.get(User, target.professional.user_id)
        to = normalize_whatsapp_number(user.phone if user else None)
        if not to:
            return payload, _failure(
                channel, config.provider, DispatchFailureReason.PROFESSIONAL_PHONE_NOT_FOUND, now
            )

        phone_number_id = resolve_sending_number(
            db, row.tenant_id, target.professional.id, config.default_phone_number_id
        )
        if not phone_number_id:
            return payload, _failure(
                channel, config.provider, DispatchFailureReason.PHONE_NUMBER_ID_NOT_FOUND, now
            )

        message = build_whatsapp_message(row.type, payload, target, config.message_timezone)

        if config.provider == WhatsappProviderName.NONE.value:
            return payload, DispatchRecord(
                channel=channel.value,
                provider=config.provider,
                outcome="sent",
                attempted_at=now,
                provider_message_id=f"mock-wa-{row.id}",
                simulated=True,
                to=to,
                message_preview=message[:MESSAGE_PREVIEW_CHARS],
            )

        if provider is None:
            return payload, _failure(
                channel,
                config.provider,
                DispatchFailureReason.PROVIDER_SEND_FAILED,
                now,
                error=f"Unsupported WhatsApp provider: {config.provider}",
            )

        send_result = _send_whatsapp(provider, config, to, message, phone_number_id)
        if not send_result.ok:
            return payload, _failure(
                channel,
                config.provider,
                DispatchFailureReason.PROVIDER_SEND_FAILED,
                now,
                error=send_result.error,
                raw=send_result.raw,
            )
        return payload, DispatchRecord(
            channel=channel.value,
            provider=config.provider,
            outcome="sent",
            attempted_at=now,
            provider_message_id=send_result.message_id,
            to=to,
            raw=send_result.raw,
        )

    return _run_dispatch(db, channel, config.provider, limit, tenant_id, handle, now)
