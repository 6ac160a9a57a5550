from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Drive an async provider call (ETA, push, WhatsApp) from sync service code.

    - Inside FastAPI sync endpoints (worker threads), hands the coroutine to
      the main loop with anyio.from_thread.run.
    - From the CLI and plain sync tests there is no loop, so anyio.run starts one.
    - Calling it from a coroutine on the loop thread is a bug: await instead.
    """

    async def _runner() -> T:
        if timeout is None:
            return await coro
        with anyio.fail_after(timeout):
            return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_runner)
        coro.close()
        raise RuntimeError("run_async called from async context; use await instead")
