"""Backoff utilities.

`exponential_backoff` yields one delay per attempt and sleeps between attempts,
so callers write their retry loop as ``async for delay in exponential_backoff(...)``.
`connect_with_backoff` wraps that loop for the adapters that need a live
connection before the worker can start.
"""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger

from queue_worker.app.core import SERVICE_NAME

T = TypeVar("T")


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[float]:
    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt >= max_attempts:
            return
        delay = min(delay * multiplier, max_delay)
        await sleep(delay)


async def connect_with_backoff(
    name: str,
    operation: Callable[[], Awaitable[T]],
    *,
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds; re-raise its last error once attempts run out."""
    _log(f"{name}_connecting")
    attempt = 0
    async for delay in exponential_backoff(
        initial_delay, max_delay, multiplier, max_attempts, sleep=sleep
    ):
        attempt += 1
        _log(f"{name}_connect_attempt", attempt=attempt, delay=delay)
        try:
            result = await operation()
        except Exception as exc:
            logger.warning("{} connect failed: {}", name, exc)
            if attempt >= max_attempts:
                _log(f"{name}_connect_failed", attempt=attempt)
                raise
            continue
        _log(f"{name}_connected", attempt=attempt)
        return result
    raise RuntimeError(f"{name} connect failed")
