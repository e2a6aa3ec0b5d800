from __future__ import annotations

import time
from collections.abc import Callable
from functools import lru_cache

from listings_api.core.caching import CachedValue
from listings_api.core.config import get_settings
from listings_api.services.repository import PostgresRepository, get_repository

AUTO_PUBLISH_ENABLED = "auto_publish_enabled"
REVIEW_COMPENSATION_ENABLED = "review_compensation_enabled"


class FeatureFlags:
    """Feature flags read from the ``feature_flags`` table and cached for ``ttl_seconds``."""

    def __init__(
        self,
        repository: PostgresRepository,
        *,
        ttl_seconds: float,
        defaults: dict[str, bool],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.defaults = dict(defaults)
        self._cache: dict[str, CachedValue[bool]] = {
            name: CachedValue(loader=self._loader(name), ttl_seconds=ttl_seconds, clock=clock) for name in self.defaults
        }

    async def is_enabled(self, name: str) -> bool:
        return await self._cache[name].get()

    async def auto_publish_enabled(self) -> bool:
        return await self.is_enabled(AUTO_PUBLISH_ENABLED)

    async def review_compensation_enabled(self) -> bool:
        return await self.is_enabled(REVIEW_COMPENSATION_ENABLED)

    async def refresh(self) -> None:
        for cached in self._cache.values():
            await cached.refresh()

    def _loader(self, name: str):
        async def load() -> bool:
            value = await self.repository.get_feature_flag(name)
            if value is None:
                return self.defaults[name]
            return value

        return load


@lru_cache
def get_feature_flags() -> FeatureFlags:
    settings = get_settings()
    return FeatureFlags(
        get_repository(),
        ttl_seconds=settings.feature_flag_cache_ttl_seconds,
        defaults={
            AUTO_PUBLISH_ENABLED: settings.auto_publish_enabled_default,
            REVIEW_COMPENSATION_ENABLED: settings.review_compensation_enabled_default,
        },
    )
