from typing import Any

from domain.exceptions.rates import ProviderError
from domain.models.rates import QuoteDirection

from .base import CryptoSourceAdapter, FiatSourceAdapter

COINCAP_URL = "https://api.coincap.io/v2"


def _rows(data: Any, provider: str) -> list[dict]:
    rows = data.get("data") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise ProviderError("CoinCap response has no data list", provider=provider)
    return [row for row in rows if isinstance(row, dict)]


class CoinCapAdapter(CryptoSourceAdapter):
    @property
    def name(self) -> str:
        return "coincap"

    async def _fetch_raw_quotes(self) -> tuple[dict[str, Any], dict[str, Any]]:
        ids = self._asset_ids()
        data = await self._request(f"{COINCAP_URL}/assets", {"ids": ",".join(ids)})

        prices, changes = {}, {}
        for row in _rows(data, self.name):
            symbol = ids.get(row.get("id"))
            if symbol is not None:
                prices[symbol] = row.get("priceUsd")
                changes[symbol] = row.get("changePercent24Hr")
        return prices, changes


class CoinCapRatesAdapter(FiatSourceAdapter):
    """
    CoinCap's /rates endpoint quotes every currency as USD per unit
    (``rateUsd``), the inverse of what the snapshot stores.
    """

    quote_direction = QuoteDirection.USD_PER_UNIT

    @property
    def name(self) -> str:
        return "coincap_rates"

    async def _fetch_raw(self) -> dict[str, Any]:
        data = await self._request(f"{COINCAP_URL}/rates")
        return {
            row.get("symbol"): row.get("rateUsd")
            for row in _rows(data, self.name)
            if row.get("type") == "fiat"
        }
