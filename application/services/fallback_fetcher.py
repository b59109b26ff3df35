import asyncio
import logging
import time
from collections.abc import Sequence

from domain.models.rates import FetchExhausted, FetchResult, FetchSuccess, RateCategory
from infrastructure.providers.base import SourceAdapter

logger = logging.getLogger(__name__)


class SourceFallbackFetcher:
    """
    Tries adapters strictly in the given order and returns the first success.

    Each adapter gets exactly one attempt bounded by its own ``timeout`` (or
    ``default_timeout``); a timeout counts as a failure like any other. When
    every adapter fails the result is a FetchExhausted, never an exception.
    """

    def __init__(self, default_timeout: float = 10.0):
        self.default_timeout = default_timeout

    async def fetch_with_fallback(
        self, adapters: Sequence[SourceAdapter], category: RateCategory | None = None
    ) -> FetchResult:
        if category is None:
            category = adapters[0].category if adapters else RateCategory.FIAT

        attempted: list[str] = []
        last_error: Exception | None = None

        for adapter in adapters:
            attempted.append(adapter.name)
            timeout = getattr(adapter, "timeout", None) or self.default_timeout
            start_time = time.monotonic()
            try:
                quotes = await asyncio.wait_for(adapter.fetch_quotes(), timeout=timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"{adapter.name} timed out after {timeout}s fetching {category.value} rates")
                continue
            except Exception as e:
                last_error = e
                logger.warning(f"{adapter.name} failed fetching {category.value} rates: {e}")
                continue

            response_time_ms = int((time.monotonic() - start_time) * 1000)
            logger.info(
                f"Fetched {len(quotes.rates)} {category.value} rates from {adapter.name} in {response_time_ms}ms"
            )
            return FetchSuccess(
                category=category, rates=quotes.rates, source=adapter.name, changes=quotes.changes
            )

        logger.error(
            f"All {category.value} sources failed ({', '.join(attempted) or 'none configured'}); "
            f"last error: {last_error}"
        )
        return FetchExhausted(category=category, attempted=tuple(attempted), last_error=last_error)
