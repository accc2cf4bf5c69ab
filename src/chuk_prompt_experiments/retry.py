# chuk_prompt_experiments/retry.py
"""Bounded async retry with exponential backoff, jitter and a per-attempt timeout.

Used for the only two suspension points in the engine: the metrics flush
write and the variant snapshot write/read.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from chuk_prompt_experiments.exceptions import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_retries: int = 3,
    timeout: float | None = None,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    rng: random.Random | None = None,
    sleep_func: SleepFunc | None = None,
) -> T:
    """
    Run ``func`` until it succeeds or ``max_retries`` retries are used up.

    Each attempt is bounded by ``timeout`` (seconds); an attempt that times
    out counts as a failure. Jitter scales each delay by 50-150%.

    Args:
        func: Zero-argument coroutine factory (use a lambda for arguments).
        operation: Name used in logs and in the raised PersistenceError.
        max_retries: Retries after the first attempt.
        timeout: Per-attempt timeout, None for no limit.
        rng: Injectable Random for deterministic jitter in tests.
        sleep_func: Injectable sleep for time control in tests.

    Raises:
        PersistenceError: when every attempt failed. ``cause`` holds the
            last underlying exception.
    """
    _rng = rng or random.Random()
    _sleep = sleep_func or asyncio.sleep
    last_exception: BaseException | None = None
    attempts = 0

    for attempt in range(max_retries + 1):
        attempts = attempt + 1
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(), timeout=timeout)
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exception = e
            logger.debug(f"{operation}: attempt {attempts} failed: {e!r}")

            if attempt == max_retries:
                break

            delay = min(base_delay * (exponential_base**attempt), max_delay)
            if jitter:
                delay *= 0.5 + _rng.random()
            await _sleep(delay)

    raise PersistenceError(operation, attempts, last_exception)
