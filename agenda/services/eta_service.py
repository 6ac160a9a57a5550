"""ETA provider adapter.

Wraps routing APIs behind one contract:
estimate_eta(origin, destination) -> EtaResult | None.

Supports Google Distance Matrix, Mapbox Directions Matrix (driving-traffic)
and OSRM. Exactly one provider is selected by name; "none" disables live
ETA and monitoring relies on caller-supplied eta_minutes.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from agenda.core.config import Settings
from agenda.db.enums import EtaProviderName, TrafficLevel
from agenda.services.http_service import call_with_retries

logger = logging.getLogger(__name__)

GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
MAPBOX_MATRIX_URL = "https://api.mapbox.com/directions-matrix/v1/mapbox/driving-traffic"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass
class EtaResult:
    """Successful provider estimate."""

    eta_minutes: int  # >= 1
    traffic_level: str | None
    raw_response: dict[str, Any]
    provider: str


@dataclass(frozen=True)
class EtaSettings:
    """ETA adapter configuration."""

    provider: str = EtaProviderName.NONE.value
    timeout_seconds: float = 4.5
    max_attempts: int = 2
    google_api_key: str = ""
    mapbox_access_token: str = ""
    osrm_base_url: str = "https://router.project-osrm.org"
    retry_base_delay: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EtaSettings":
        timeout_ms = settings.PUNCTUALITY_ETA_TIMEOUT_MS
        return cls(
            provider=(settings.PUNCTUALITY_ETA_PROVIDER or "none").strip().lower(),
            timeout_seconds=(timeout_ms if timeout_ms > 0 else 4500) / 1000,
            max_attempts=max(1, settings.PUNCTUALITY_ETA_RETRY_MAX),
            google_api_key=settings.GOOGLE_MAPS_API_KEY.strip(),
            mapbox_access_token=settings.MAPBOX_ACCESS_TOKEN.strip(),
            osrm_base_url=settings.OSRM_BASE_URL.strip().rstrip("/"),
        )


def eta_minutes_from_seconds(seconds: float) -> int:
    return max(1, math.ceil(seconds / 60))


def classify_traffic_level(duration_sec: float, duration_in_traffic_sec: float | None) -> str | None:
    """Ratio of in-traffic to free-flow duration: <=1.10 low, <=1.35 medium, else high."""
    if not duration_in_traffic_sec or duration_sec <= 0:
        return None
    ratio = duration_in_traffic_sec / duration_sec
    if ratio <= 1.1:
        return TrafficLevel.LOW.value
    if ratio <= 1.35:
        return TrafficLevel.MEDIUM.value
    return TrafficLevel.HIGH.value


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return float(value)


class EtaProvider(ABC):
    """Abstract base class for routing providers."""

    name: str

    @abstractmethod
    async def estimate(
        self, client: httpx.AsyncClient, origin: Coordinates, destination: Coordinates
    ) -> EtaResult | None:
        """Single provider call. None for a non-2xx or unusable response."""


class GoogleDistanceMatrixProvider(EtaProvider):
    """Google Distance Matrix (driving, departure now, traffic-aware)."""

    name = "google_distance_matrix"

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def estimate(self, client, origin, destination):
        if not self.api_key:
            return None
        response = await client.get(
            GOOGLE_DISTANCE_MATRIX_URL,
            params={
                "origins": f"{origin.lat},{origin.lng}",
                "destinations": f"{destination.lat},{destination.lng}",
                "mode": "driving",
                "departure_time": "now",
                "traffic_model": "best_guess",
                "key": self.api_key,
            },
        )
        if not response.is_success:
            return None
        data = response.json()
        if not isinstance(data, dict):
            return None

        rows = data.get("rows") or []
        elements = (rows[0].get("elements") or []) if rows and isinstance(rows[0], dict) else []
        element = elements[0] if elements and isinstance(elements[0], dict) else None
        if not element or element.get("status") != "OK":
            return None

        duration_sec = _positive_number((element.get("duration") or {}).get("value")) or 0.0
        in_traffic = _positive_number((element.get("duration_in_traffic") or {}).get("value"))
        effective = in_traffic or duration_sec
        if not effective:
            return None

        return EtaResult(
            eta_minutes=eta_minutes_from_seconds(effective),
            traffic_level=classify_traffic_level(duration_sec, effective),
            raw_response=data,
            provider=self.name,
        )


class MapboxDrivingTrafficProvider(EtaProvider):
    """Mapbox Directions Matrix, driving-traffic profile."""

    name = "mapbox_driving_traffic"

    def __init__(self, access_token: str):
        self.access_token = access_token

    async def estimate(self, client, origin, destination):
        if not self.access_token:
            return None
        coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        response = await client.get(
            f"{MAPBOX_MATRIX_URL}/{coords}",
            params={"annotations": "duration", "access_token": self.access_token},
        )
        if not response.is_success:
            return None
        data = response.json()
        if not isinstance(data, dict):
            return None

        durations = data.get("durations") or []
        row = durations[0] if durations and isinstance(durations[0], list) else []
        seconds = _positive_number(row[1]) if len(row) > 1 else None
        if seconds is None:
            return None

        return EtaResult(
            eta_minutes=eta_minutes_from_seconds(seconds),
            traffic_level=None,
            raw_response=data,
            provider=self.name,
        )


class OsrmProvider(EtaProvider):
    """OSRM route service (no traffic data)."""

    name = "osrm"

    def __init__(self, base_url: str):
        self.base_url = base_url

    async def estimate(self, client, origin, destination):
        coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        response = await client.get(
            f"{self.base_url}/route/v1/driving/{coords}",
            params={"overview": "false"},
        )
        if not response.is_success:
            return None
        data = response.json()
        if not isinstance(data, dict):
            return None

        routes = data.get("routes") or []
        route = routes[0] if routes and isinstance(routes[0], dict) else {}
        seconds = _positive_number(route.get("duration"))
        if seconds is None:
            return None

        return EtaResult(
            eta_minutes=eta_minutes_from_seconds(seconds),
            traffic_level=None,
            raw_response=data,
            provider=self.name,
        )


def get_eta_provider(config: EtaSettings) -> EtaProvider | None:
    """Factory: provider for the configured name, None when disabled or unknown."""
    if config.provider == EtaProviderName.GOOGLE.value:
        return GoogleDistanceMatrixProvider(config.google_api_key)
    if config.provider == EtaProviderName.MAPBOX.value:
        return MapboxDrivingTrafficProvider(config.mapbox_access_token)
    if config.provider == EtaProviderName.OSRM.value:
        return OsrmProvider(config.osrm_base_url)
    return None


class EtaEstimator:
    """
    Estimates ETA with the configured provider, timeout and bounded retry.

    Never retries across providers. An unknown provider name counts as an
    attempted-and-failed provider so misconfiguration stays visible.
    """

    def __init__(self, config: EtaSettings, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.provider = get_eta_provider(config)
        self._transport = transport

    @property
    def enabled(self) -> bool:
        """False for "none": no provider is ever attempted."""
        return self.config.provider != EtaProviderName.NONE.value

    @property
    def failure_marker(self) -> str:
        """Provider value recorded on a snapshot after exhausted retries."""
        return f"{self.config.provider}_failed"

    async def estimate_eta(
        self,
        origin: Coordinates,
        destination: Coordinates,
        log_extra: dict | None = None,
    ) -> EtaResult | None:
        if not self.enabled:
            return None
        if self.provider is None:
            logger.warning(
                "Unknown ETA provider %r configured", self.config.provider, extra=log_extra
            )
            return None

        provider = self.provider
        async with httpx.AsyncClient(
            timeout=self.config.timeout_seconds, transport=self._transport
        ) as client:
            return await call_with_retries(
                lambda: provider.estimate(client, origin, destination),
                max_attempts=self.config.max_attempts,
                timeout_seconds=self.config.timeout_seconds,
                base_delay=self.config.retry_base_delay,
                label=f"ETA {provider.name}",
                log_extra=log_extra,
            )
