# zyra/cache.py
# Purpose: Keyed TTL memoization for upstream market data.
# Why: Shield the API from third-party latency and transient failures.
# Pitfalls: Not persistent; resets if the process restarts. No in-flight
#   deduplication: two concurrent misses on one key both call the producer.

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from zyra.errors import FetchError
from zyra.observability import CACHE_EVENTS

T = TypeVar("T")

DEFAULT_TTL_SEC = 60.0

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    value: T
    stored_at: float
    hit: bool = False
    # True only when a refresh failed and an expired entry was served instead
    stale: bool = False


class TTLCache:
    """
    Process-local cache: key -> (value, stored_at).

    fetch_with_cache(key, producer):
      - fresh entry (age < ttl)          -> cached value, producer not called
      - producer succeeds                -> store + return new value
      - producer fails, entry exists     -> old value (stale fallback), error logged
      - producer fails, no entry         -> FetchError propagates
    """

    def __init__(
        self,
        ttl_sec: float = DEFAULT_TTL_SEC,
        ttls: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_sec <= 0:
            raise ValueError("ttl_sec must be positive")
        self.ttl_sec = float(ttl_sec)
        self.ttls = dict(ttls or {})
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def ttl_for(self, key: str, ttl: float | None = None) -> float:
        if ttl is not None:
            return float(ttl)
        if key in self.ttls:
            return self.ttls[key]
        resource = key.split(":", 1)[0]
        return self.ttls.get(resource, self.ttl_sec)

    def is_fresh(self, key: str, ttl: float | None = None) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        return (self._clock() - entry.stored_at) < self.ttl_for(key, ttl)

    async def lookup(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> CacheResult[T]:
        entry = self._entries.get(key)
        now = self._clock()

        if entry is not None and (now - entry.stored_at) < self.ttl_for(key, ttl):
            CACHE_EVENTS.labels(event="hit").inc()
            return CacheResult(value=entry.value, stored_at=entry.stored_at, hit=True)

        CACHE_EVENTS.labels(event="miss").inc()
        try:
            value = await producer()
        except Exception as exc:
            if entry is not None:
                CACHE_EVENTS.labels(event="stale").inc()
                logger.warning(
                    "refresh of %s failed, serving entry from %.0fs ago: %s",
                    key,
                    now - entry.stored_at,
                    exc,
                )
                return CacheResult(value=entry.value, stored_at=entry.stored_at, stale=True)

            CACHE_EVENTS.labels(event="error").inc()
            if isinstance(exc, FetchError):
                raise
            raise FetchError(key, f"fetch of {key} failed: {exc}") from exc

        stored_at = self._clock()
        self._entries[key] = CacheEntry(value=value, stored_at=stored_at)
        return CacheResult(value=value, stored_at=stored_at)

    async def fetch_with_cache(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        result = await self.lookup(key, producer, ttl=ttl)
        return result.value

    def clear(self) -> None:
        """Drop every entry; the next lookup of any key calls its producer."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache cleared (%d entries)", count)
