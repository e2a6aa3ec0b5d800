from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from asyncpg import exceptions as pg_exc

T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    pg_exc.SerializationError,
    pg_exc.DeadlockDetectedError,
    pg_exc.LockNotAvailableError,
    pg_exc.TooManyConnectionsError,
)


class TransientRetriesExhaustedError(Exception):
    """Raised when a transactional write keeps failing with transient errors."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


def compute_backoff_delay(attempt: int, *, base_seconds: float, max_seconds: float) -> float:
    if base_seconds <= 0:
        return 0.0
    multiplier = max(0, attempt - 1)
    return min(base_seconds * (2**multiplier), max_seconds)


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_attempts: int,
    base_seconds: float,
    max_seconds: float,
    transient_errors: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except transient_errors as exc:
            if attempt >= attempts:
                logger.error("%s failed after %s attempts: %s", label, attempt, exc)
                raise TransientRetriesExhaustedError(label, attempt, exc) from exc
            delay = compute_backoff_delay(attempt, base_seconds=base_seconds, max_seconds=max_seconds)
            logger.warning("%s hit transient error (%s); retry %s/%s in %.2fs", label, exc, attempt, attempts, delay)
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
