import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from domain.models.rates import ConnectionState, RateCategory, RateSnapshot, ServiceState
from infrastructure.cache.rate_cache import CacheEntry, RateCache
from infrastructure.notifications.subscribers import SubscriberRegistry, Subscription
from infrastructure.providers.base import CryptoSourceAdapter, FiatSourceAdapter
from infrastructure.streaming.forex_feed import ForexStreamFeed

from .fallback_fetcher import SourceFallbackFetcher

logger = logging.getLogger(__name__)

STREAM_SOURCE = "stream"

SnapshotListener = Callable[[RateSnapshot], None]


class MarketDataService:
    """
    Single source of truth for fiat rates and crypto prices.

    Fiat rates come from the streaming feed while it is connected and has
    data, otherwise from the cached fallback chain; when the stream drops the
    held snapshot switches to cached fiat at once. Crypto prices always come
    from the cached fallback chain. Every new snapshot is fanned out to all
    subscribers; the current snapshot is swapped whole, never mutated.
    """

    def __init__(
        self,
        fetcher: SourceFallbackFetcher,
        cache: RateCache,
        fiat_adapters: Sequence[FiatSourceAdapter],
        crypto_adapters: Sequence[CryptoSourceAdapter],
        feed: ForexStreamFeed | None = None,
        fiat_ttl: float = 30.0,
        crypto_ttl: float = 30.0,
        refresh_interval: float = 300.0,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.fiat_adapters = list(fiat_adapters)
        self.crypto_adapters = list(crypto_adapters)
        self.feed = feed
        self.fiat_ttl = fiat_ttl
        self.crypto_ttl = crypto_ttl
        self.refresh_interval = refresh_interval

        self._state = ServiceState.UNINITIALIZED
        self._snapshot: RateSnapshot | None = None
        self._crypto_entry: CacheEntry | None = None
        self._subscribers: SubscriberRegistry[RateSnapshot] = SubscriberRegistry("market-data")
        self._publish_lock = threading.RLock()
        self._feed_subscriptions: list[Subscription] = []
        self._refresh_task: asyncio.Task | None = None

        fiat_fallback = cache.fallback_entry(RateCategory.FIAT)
        crypto_fallback = cache.fallback_entry(RateCategory.CRYPTO)
        self._fallback_snapshot = self._compose(
            fiat_fallback.rates, fiat_fallback.source, True, crypto_fallback
        )

    @property
    def state(self) -> ServiceState:
        return self._state

    async def initialize(self) -> None:
        """Start the feed, do one fallback refresh, then start the periodic refresh. Idempotent."""
        if self._state is not ServiceState.UNINITIALIZED:
            return
        self._state = ServiceState.INITIALIZING
        logger.info("Initializing market data service...")

        if self.feed is not None:
            self._feed_subscriptions = [
                self.feed.subscribe(self._on_stream_rates),
                self.feed.subscribe_state(self._on_stream_state),
            ]
            self.feed.connect()

        await self._refresh()
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="market-data-refresh")

        self._state = ServiceState.READY
        logger.info(f"Market data service ready (refresh every {self.refresh_interval}s)")

    async def teardown(self) -> None:
        logger.info("Tearing down market data service...")
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for subscription in self._feed_subscriptions:
            subscription.unsubscribe()
        self._feed_subscriptions = []
        if self.feed is not None:
            self.feed.disconnect()

        self._subscribers.clear()
        self._state = ServiceState.UNINITIALIZED

    def get_current_snapshot(self) -> RateSnapshot:
        """Most recent complete snapshot; the static fallback table if nothing was ever obtained."""
        snapshot = self._snapshot
        if snapshot is None:
            return self._fallback_snapshot
        if snapshot.fiat_source == STREAM_SOURCE and self._live_stream_rates() is None:
            return self._without_stream()
        return snapshot

    async def refresh_now(self) -> None:
        """Out-of-band fetch of both categories, bypassing the cache window."""
        await self._refresh(force=True)

    def subscribe(self, callback: SnapshotListener) -> Subscription:
        """Register a listener; it receives the current snapshot synchronously if one is held."""
        with self._publish_lock:
            return self._subscribers.add(callback, replay=self._snapshot)

    def convert(self, amount: float, from_code: str, to_code: str) -> float:
        """
        Convert through USD. Same code returns ``amount`` exactly; an unknown
        code on either side also returns ``amount`` unchanged.
        """
        source = _normalize_code(from_code)
        target = _normalize_code(to_code)
        if source is not None and source == target:
            return amount
        if from_code == to_code:
            return amount

        snapshot = self.get_current_snapshot()
        usd_value = _to_usd(amount, source, snapshot)
        if usd_value is None:
            logger.debug(f"Unknown currency {from_code!r}, returning amount unchanged")
            return amount

        converted = _from_usd(usd_value, target, snapshot)
        if converted is None:
            logger.debug(f"Unknown currency {to_code!r}, returning amount unchanged")
            return amount
        return converted

    def exchange_rate(self, from_code: str, to_code: str) -> float:
        return self.convert(1.0, from_code, to_code)

    def status(self) -> dict[str, Any]:
        snapshot = self.get_current_snapshot()
        return {
            "state": self._state.value,
            "stream": {
                "enabled": self.feed is not None,
                "state": self.feed.state.value if self.feed is not None else None,
                "reconnect_attempts": self.feed.reconnect_attempts if self.feed is not None else 0,
            },
            "snapshot": {
                "last_updated": snapshot.timestamp,
                "age_seconds": round(snapshot.age_seconds(), 3),
                "stale": snapshot.stale,
                "fiat_source": snapshot.fiat_source,
                "crypto_source": snapshot.crypto_source,
            },
            "subscribers": len(self._subscribers),
        }

    async def _refresh(self, force: bool = False) -> None:
        fetch_fiat = force or self._live_stream_rates() is None

        crypto_entry, fiat_entry = await asyncio.gather(
            self.cache.get_or_fetch(
                RateCategory.CRYPTO, self.crypto_ttl, self._fetch_crypto, force=force
            ),
            self._maybe_fetch_fiat(fetch_fiat, force),
        )

        with self._publish_lock:
            self._crypto_entry = crypto_entry
            fiat, fiat_source, fiat_stale = self._select_fiat(fiat_entry)
            self._publish(self._compose(fiat, fiat_source, fiat_stale, crypto_entry))

    async def _maybe_fetch_fiat(self, fetch: bool, force: bool) -> CacheEntry | None:
        if not fetch:
            return None
        return await self.cache.get_or_fetch(
            RateCategory.FIAT, self.fiat_ttl, self._fetch_fiat, force=force
        )

    async def _fetch_fiat(self):
        return await self.fetcher.fetch_with_fallback(self.fiat_adapters, RateCategory.FIAT)

    async def _fetch_crypto(self):
        return await self.fetcher.fetch_with_fallback(self.crypto_adapters, RateCategory.CRYPTO)

    def _select_fiat(self, fiat_entry: CacheEntry | None) -> tuple[Mapping[str, float], str, bool]:
        stream_rates = self._live_stream_rates()
        if stream_rates is not None:
            return stream_rates, STREAM_SOURCE, False
        if fiat_entry is None:
            # The stream dropped while crypto was being fetched.
            fiat_entry = self.cache.peek(RateCategory.FIAT)
        if fiat_entry is not None:
            stale = fiat_entry.stale or self.cache.is_expired(fiat_entry, self.fiat_ttl)
            return fiat_entry.rates, fiat_entry.source, stale
        current = self._snapshot
        if current is not None:
            return current.fiat, current.fiat_source, True
        fallback = self.cache.fallback_entry(RateCategory.FIAT)
        return fallback.rates, fallback.source, True

    def _live_stream_rates(self) -> dict[str, float] | None:
        if self.feed is None or not self.feed.is_connected():
            return None
        rates = self.feed.get_rates()
        return rates or None

    def _current_crypto_entry(self) -> CacheEntry:
        crypto_entry = self._crypto_entry or self.cache.peek(RateCategory.CRYPTO)
        if crypto_entry is None:
            crypto_entry = self.cache.fallback_entry(RateCategory.CRYPTO)
        return crypto_entry

    def _compose(
        self, fiat: Mapping[str, float], fiat_source: str, fiat_stale: bool, crypto_entry: CacheEntry
    ) -> RateSnapshot:
        return RateSnapshot(
            timestamp=datetime.now(UTC),
            fiat=fiat,
            crypto=crypto_entry.rates,
            fiat_source=fiat_source,
            crypto_source=crypto_entry.source,
            stale=fiat_stale or crypto_entry.stale,
            crypto_change_24h=crypto_entry.changes,
        )

    def _without_stream(self) -> RateSnapshot:
        fiat, fiat_source, fiat_stale = self._select_fiat(None)
        return self._compose(fiat, fiat_source, fiat_stale, self._current_crypto_entry())

    def _on_stream_rates(self, rates: Mapping[str, float]) -> None:
        if self._state is ServiceState.INITIALIZING:
            # The initial refresh reads the feed's current rates itself.
            return
        with self._publish_lock:
            self._publish(self._compose(rates, STREAM_SOURCE, False, self._current_crypto_entry()))
        logger.debug("Updated fiat rates from the forex stream")

    def _on_stream_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED or self._state is not ServiceState.READY:
            return
        with self._publish_lock:
            current = self._snapshot
            if current is None or current.fiat_source != STREAM_SOURCE:
                return
            snapshot = self._without_stream()
            if snapshot.fiat_source == STREAM_SOURCE and current.stale:
                # No fetched fiat to switch to and already flagged stale.
                return
            self._publish(snapshot)
        logger.warning(f"Forex stream {state.value}, serving fiat rates from {snapshot.fiat_source}")

    def _publish(self, snapshot: RateSnapshot) -> None:
        with self._publish_lock:
            self._snapshot = snapshot
            delivered = self._subscribers.publish(snapshot)
        logger.info(
            f"Rate snapshot updated (fiat: {snapshot.fiat_source}, crypto: {snapshot.crypto_source}, "
            f"stale: {snapshot.stale}) -> {delivered} subscriber(s)"
        )

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self._refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic rate refresh failed: {e}", exc_info=True)


def _normalize_code(code: Any) -> str | None:
    if not isinstance(code, str):
        return None
    return code.strip().upper()


def _to_usd(amount: float, code: str | None, snapshot: RateSnapshot) -> float | None:
    if code is None:
        return None
    if code in snapshot.fiat:
        return amount / snapshot.fiat[code]
    if code in snapshot.crypto:
        return amount * snapshot.crypto[code]
    return None


def _from_usd(usd_value: float, code: str | None, snapshot: RateSnapshot) -> float | None:
    if code is None:
        return None
    if code in snapshot.fiat:
        return usd_value * snapshot.fiat[code]
    if code in snapshot.crypto:
        return usd_value / snapshot.crypto[code]
    return None
