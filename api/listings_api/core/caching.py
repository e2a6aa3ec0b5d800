from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CachedValue(Generic[T]):
    """A value with an expiry, refreshed explicitly through a loader.

    The loader is awaited only when the cached value is missing or stale. If a
    refresh fails and a previous value was loaded, that value is served and the
    loader is tried again on the next read.
    """

    loader: Callable[[], Awaitable[T]]
    ttl_seconds: float
    clock: Callable[[], float] = time.monotonic
    value: T | None = None
    expires_at: float | None = None
    loaded: bool = False

    def is_fresh(self) -> bool:
        return self.expires_at is not None and self.clock() < self.expires_at

    async def get(self) -> T:
        if self.is_fresh():
            return self.value  # type: ignore[return-value]
        return await self.refresh()

    async def refresh(self) -> T:
        try:
            value = await self.loader()
        except Exception:
            if not self.loaded:
                raise
            logger.exception("cached value refresh failed; serving previous value")
            return self.value  # type: ignore[return-value]
        self.value = value
        self.loaded = True
        self.expires_at = self.clock() + max(0.0, self.ttl_seconds)
        return value

    def invalidate(self) -> None:
        self.expires_at = None
