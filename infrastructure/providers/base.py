import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx

from domain.exceptions.rates import ProviderError
from domain.models.rates import BASE_CURRENCY, QuoteDirection, RateCategory, SourceQuotes, clean_changes, clean_rates

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Wraps one upstream provider's request/response shape and normalizes it
    into a ``{code: rate}`` map for a single category.

    Adapters are stateless between calls and never retry; ordering and
    fallback belong to SourceFallbackFetcher.
    """

    category: RateCategory

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        symbols: Iterable[str] | None = None,
    ):
        self.timeout = timeout
        self.symbols = [s.upper() for s in symbols] if symbols else []
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"accept": "application/json"},
        )

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def _fetch_raw(self) -> dict[str, Any]:
        """Return the provider's rates before normalization."""

    async def fetch(self) -> dict[str, float]:
        return (await self.fetch_quotes()).rates

    async def fetch_quotes(self) -> SourceQuotes:
        return SourceQuotes(rates=self._normalize(await self._fetch_raw()))

    def _normalize(self, raw: dict[str, Any]) -> dict[str, float]:
        rates = clean_rates(raw)
        if self.symbols:
            rates = {code: rate for code, rate in rates.items() if code in self.symbols}
        if not rates:
            raise ProviderError(f"{self.name} returned no usable rates", provider=self.name)
        return rates

    async def _request(self, url: str, params: dict | None = None) -> Any:
        try:
            response = await self._client.get(url, params=params or {})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{self.name} HTTP error {e.response.status_code}: {e.response.text[:200]}",
                provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"{self.name} request failed: {e.__class__.__name__}", provider=self.name
            ) from e
        except Exception as e:
            raise ProviderError(
                f"{self.name} response parsing error: {str(e)}", provider=self.name
            ) from e

    async def close(self) -> None:
        await self._client.aclose()

    def __repr__(self):
        return f"<{self.__class__.__name__}(name={self.name})>"


class FiatSourceAdapter(SourceAdapter):
    category = RateCategory.FIAT
    quote_direction: QuoteDirection = QuoteDirection.UNITS_PER_USD

    async def fetch_quotes(self) -> SourceQuotes:
        rates = (await super().fetch_quotes()).rates
        if self.quote_direction is QuoteDirection.USD_PER_UNIT:
            rates = {code: 1.0 / rate for code, rate in rates.items()}
        rates.pop(BASE_CURRENCY, None)
        if not rates:
            raise ProviderError(f"{self.name} returned no non-base rates", provider=self.name)
        rates[BASE_CURRENCY] = 1.0
        return SourceQuotes(rates=rates)


class CryptoSourceAdapter(SourceAdapter):
    """Normalizes into ``{symbol: usd_price}``, with ``{symbol: percent_change_24h}`` alongside."""

    category = RateCategory.CRYPTO

    # Ticker symbol -> provider asset id
    ASSET_IDS: dict[str, str] = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "USDT": "tether",
        "ADA": "cardano",
        "DOT": "polkadot",
        "LINK": "chainlink",
        "XRP": "ripple",
        "SOL": "solana",
        "LTC": "litecoin",
        "BCH": "bitcoin-cash",
    }

    def _asset_ids(self) -> dict[str, str]:
        symbols = self.symbols or list(self.ASSET_IDS)
        return {self.ASSET_IDS[s]: s for s in symbols if s in self.ASSET_IDS}

    @abstractmethod
    async def _fetch_raw_quotes(self) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return ``(prices, changes_24h)`` keyed by symbol, before normalization."""

    async def _fetch_raw(self) -> dict[str, Any]:
        prices, _ = await self._fetch_raw_quotes()
        return prices

    async def fetch_quotes(self) -> SourceQuotes:
        prices, changes = await self._fetch_raw_quotes()
        rates = self._normalize(prices)
        return SourceQuotes(
            rates=rates,
            changes={code: change for code, change in clean_changes(changes).items() if code in rates},
        )
