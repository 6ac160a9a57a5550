"""ETA provider adapter: provider contracts, retries, timeouts and failure markers."""

import anyio
import httpx
import pytest

from agenda.core.config import settings
from agenda.services.eta_service import (
    Coordinates,
    EtaEstimator,
    EtaSettings,
    classify_traffic_level,
    eta_minutes_from_seconds,
)

ORIGIN = Coordinates(lat=-23.55, lng=-46.63)
DESTINATION = Coordinates(lat=-23.56, lng=-46.65)


def _estimator(provider: str, handler, **overrides) -> tuple[EtaEstimator, list[httpx.Request]]:
    calls: list[httpx.Request] = []

    def recording(request: httpx.Request):
        calls.append(request)
        return handler(request)

    config = EtaSettings(
        provider=provider,
        timeout_seconds=overrides.pop("timeout_seconds", 1.0),
        max_attempts=overrides.pop("max_attempts", 2),
        google_api_key=overrides.pop("google_api_key", "g-key"),
        mapbox_access_token=overrides.pop("mapbox_access_token", "mb-token"),
        osrm_base_url="https://osrm.test",
    )
    return EtaEstimator(config, transport=httpx.MockTransport(recording)), calls


def test_eta_minutes_rounds_up_with_floor_of_one():
    assert eta_minutes_from_seconds(1) == 1
    assert eta_minutes_from_seconds(60) == 1
    assert eta_minutes_from_seconds(61) == 2
    assert eta_minutes_from_seconds(0) == 1


def test_traffic_level_thresholds():
    assert classify_traffic_level(600, 660) == "low"
    assert classify_traffic_level(600, 810) == "medium"
    assert classify_traffic_level(600, 900) == "high"
    assert classify_traffic_level(600, None) is None


def test_settings_normalization():
    config = EtaSettings.from_settings(
        settings.model_copy(
            update={
                "PUNCTUALITY_ETA_PROVIDER": "  OSRM ",
                "PUNCTUALITY_ETA_TIMEOUT_MS": 0,
                "PUNCTUALITY_ETA_RETRY_MAX": 0,
                "OSRM_BASE_URL": "https://osrm.local/ ",
            }
        )
    )
    assert config.provider == "osrm"
    assert config.timeout_seconds == 4.5
    assert config.max_attempts == 1
    assert config.osrm_base_url == "https://osrm.local"


async def test_google_distance_matrix_success():
    def handler(request):
        assert request.url.params["departure_time"] == "now"
        assert request.url.params["key"] == "g-key"
        return httpx.Response(
            200,
            json={
                "rows": [
                    {
                        "elements": [
                            {
                                "status": "OK",
                                "duration": {"value": 600},
                                "duration_in_traffic": {"value": 900},
                            }
                        ]
                    }
                ]
            },
        )

    estimator, calls = _estimator("google", handler)
    result = await estimator.estimate_eta(ORIGIN, DESTINATION)

    assert result is not None
    assert result.eta_minutes == 15
    assert result.traffic_level == "high"
    assert result.provider == "google_distance_matrix"
    assert len(calls) == 1


async def test_google_without_api_key_never_calls_out():
    estimator, calls = _estimator(
        "google", lambda request: httpx.Response(200, json={}), google_api_key=""
    )
    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
    assert calls == []


async def test_mapbox_driving_traffic_success():
    def handler(request):
        assert "driving-traffic" in request.url.path
        assert f"{ORIGIN.lng},{ORIGIN.lat}" in request.url.path
        return httpx.Response(200, json={"durations": [[0, 61], [58, 0]]})

    estimator, _ = _estimator("mapbox", handler)
    result = await estimator.estimate_eta(ORIGIN, DESTINATION)

    assert result is not None
    assert result.eta_minutes == 2
    assert result.traffic_level is None
    assert result.provider == "mapbox_driving_traffic"


async def test_osrm_success():
    def handler(request):
        assert request.url.host == "osrm.test"
        return httpx.Response(200, json={"routes": [{"duration": 59}]})

    estimator, _ = _estimator("osrm", handler)
    result = await estimator.estimate_eta(ORIGIN, DESTINATION)

    assert result is not None
    assert result.eta_minutes == 1
    assert result.provider == "osrm"


async def test_retries_then_gives_up():
    estimator, calls = _estimator("osrm", lambda request: httpx.Response(503), max_attempts=3)

    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
    assert len(calls) == 3
    assert estimator.failure_marker == "osrm_failed"


async def test_retry_recovers_on_second_attempt():
    responses = iter([httpx.Response(500), httpx.Response(200, json={"routes": [{"duration": 300}]})])
    estimator, calls = _estimator("osrm", lambda request: next(responses))

    result = await estimator.estimate_eta(ORIGIN, DESTINATION)

    assert result is not None
    assert result.eta_minutes == 5
    assert len(calls) == 2


async def test_malformed_body_is_a_failed_attempt():
    estimator, calls = _estimator(
        "osrm", lambda request: httpx.Response(200, content=b"not json"), max_attempts=2
    )
    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
    assert len(calls) == 2


async def test_timeout_is_a_failed_attempt():
    async def slow(request):
        await anyio.sleep(1)
        return httpx.Response(200, json={"routes": [{"duration": 60}]})

    config = EtaSettings(provider="osrm", timeout_seconds=0.05, max_attempts=1, osrm_base_url="https://osrm.test")
    estimator = EtaEstimator(config, transport=httpx.MockTransport(slow))

    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None


async def test_none_provider_is_disabled():
    estimator, calls = _estimator("none", lambda request: httpx.Response(200, json={}))

    assert not estimator.enabled
    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
    assert calls == []


async def test_unknown_provider_counts_as_failed():
    estimator, calls = _estimator("waze", lambda request: httpx.Response(200, json={}))

    assert estimator.enabled
    assert estimator.failure_marker == "waze_failed"
    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
    assert calls == []


@pytest.mark.parametrize(
    "body",
    [
        {"rows": []},
        {"rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]},
        {"rows": [{"elements": [{"status": "OK", "duration": {"value": 0}}]}]},
    ],
)
async def test_google_unusable_payloads(body):
    estimator, _ = _estimator("google", lambda request: httpx.Response(200, json=body), max_attempts=1)
    assert await estimator.estimate_eta(ORIGIN, DESTINATION) is None
