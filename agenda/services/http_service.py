"""HTTP helpers with timeout/retry for external providers."""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable, TypeVar

import anyio
import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with jitter (0 disables waiting)."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def call_with_retries(
    call: Callable[[], Awaitable[T | None]],
    *,
    max_attempts: int,
    timeout_seconds: float,
    base_delay: float = 0.0,
    max_delay: float = 1.0,
    label: str = "provider",
    log_extra: dict | None = None,
) -> T | None:
    """
    Run a provider call with a per-attempt timeout and bounded retries.

    The call returns None for an unusable (non-2xx or malformed) response.
    Timeouts, transport errors and undecodable bodies are soft failures too:
    they are logged and retried, never raised. Returns None once attempts
    are exhausted.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            with anyio.fail_after(timeout_seconds):
                result = await call()
        except TimeoutError:
            logger.warning(
                "%s call timed out (attempt %s/%s)", label, attempt + 1, attempts, extra=log_extra
            )
        except (httpx.HTTPError, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
            logger.warning(
                "%s call failed (attempt %s/%s): %s",
                label,
                attempt + 1,
                attempts,
                exc.__class__.__name__,
                extra=log_extra,
            )
        else:
            if result is not None:
                return result
            logger.warning(
                "%s returned no usable result (attempt %s/%s)",
                label,
                attempt + 1,
                attempts,
                extra=log_extra,
            )

        if attempt < attempts - 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await anyio.sleep(delay)

    return None
