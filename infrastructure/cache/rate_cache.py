import asyncio
import dataclasses
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from domain.models.rates import FetchResult, RateCategory

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"


@dataclass(frozen=True)
class CacheEntry:
    category: RateCategory
    rates: Mapping[str, float]
    source: str
    fetched_at: datetime
    stored_at: float
    stale: bool = False
    changes: Mapping[str, float] = field(default_factory=dict)


class RateCache:
    """
    Short-TTL in-memory cache with one slot per category.

    A whole category is cached and replaced as a unit. When a fetch fails the
    previous entry is served marked stale, or the static fallback table when
    nothing was ever fetched; a failed category is not retried until ``ttl``
    has passed since the failed attempt.
    """

    def __init__(
        self,
        fallback: Mapping[RateCategory, Mapping[str, float]],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fallback = {
            category: MappingProxyType(dict(rates)) for category, rates in fallback.items()
        }
        self._clock = clock
        self._entries: dict[RateCategory, CacheEntry] = {}
        self._last_attempt: dict[RateCategory, float] = {}
        self._fetch_locks: dict[RateCategory, asyncio.Lock] = {}
        self._lock = threading.Lock()

    def peek(self, category: RateCategory) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(category)

    def is_expired(self, entry: CacheEntry, ttl: float) -> bool:
        return self._clock() - entry.stored_at >= ttl

    def fallback_entry(self, category: RateCategory) -> CacheEntry:
        rates = self._fallback.get(category, MappingProxyType({}))
        # The static table has no movement data; crypto assets report a flat 24h change.
        changes = {code: 0.0 for code in rates} if category is RateCategory.CRYPTO else {}
        return CacheEntry(
            category=category,
            rates=rates,
            source=FALLBACK_SOURCE,
            fetched_at=datetime.now(UTC),
            stored_at=self._clock(),
            stale=True,
            changes=MappingProxyType(changes),
        )

    def invalidate(self, category: RateCategory | None = None) -> None:
        with self._lock:
            if category is None:
                self._entries.clear()
                self._last_attempt.clear()
            else:
                self._entries.pop(category, None)
                self._last_attempt.pop(category, None)

    async def get_or_fetch(
        self,
        category: RateCategory,
        ttl: float,
        fetch_fn: Callable[[], Awaitable[FetchResult]],
        force: bool = False,
    ) -> CacheEntry:
        if not force:
            entry = self._fresh(category, ttl)
            if entry is not None:
                logger.debug(f"Cache HIT for {category.value}")
                return entry

        async with self._fetch_lock(category):
            now = self._clock()
            if not force:
                # Another caller may have refreshed while we waited on the lock.
                entry = self._fresh(category, ttl)
                if entry is not None:
                    return entry

                with self._lock:
                    last_attempt = self._last_attempt.get(category)
                if last_attempt is not None and now - last_attempt < ttl:
                    logger.debug(f"Recent {category.value} fetch failed, serving degraded data")
                    return self._degraded(category)

            with self._lock:
                self._last_attempt[category] = now

            logger.debug(f"Cache MISS for {category.value}, fetching")
            try:
                result = await fetch_fn()
            except Exception as e:
                logger.error(f"Fetch for {category.value} raised unexpectedly: {e}", exc_info=True)
                return self._degraded(category)

            if not result.ok:
                return self._degraded(category)

            entry = CacheEntry(
                category=category,
                rates=MappingProxyType(dict(result.rates)),
                source=result.source,
                fetched_at=datetime.now(UTC),
                stored_at=self._clock(),
                changes=MappingProxyType(dict(result.changes)),
            )
            with self._lock:
                self._entries[category] = entry
            return entry

    def _fresh(self, category: RateCategory, ttl: float) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(category)
        if entry is not None and self._clock() - entry.stored_at < ttl:
            return entry
        return None

    def _degraded(self, category: RateCategory) -> CacheEntry:
        with self._lock:
            entry = self._entries.get(category)
        if entry is not None:
            logger.warning(f"Serving stale {category.value} rates from {entry.source}")
            return dataclasses.replace(entry, stale=True)
        logger.warning(f"No cached {category.value} rates, serving the static fallback table")
        return self.fallback_entry(category)

    def _fetch_lock(self, category: RateCategory) -> asyncio.Lock:
        with self._lock:
            lock = self._fetch_locks.get(category)
            if lock is None:
                lock = self._fetch_locks[category] = asyncio.Lock()
            return lock
