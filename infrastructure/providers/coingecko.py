from typing import Any

from domain.exceptions.rates import ProviderError

from .base import CryptoSourceAdapter


class CoinGeckoAdapter(CryptoSourceAdapter):
    BASE_URL = "https://api.coingecko.com/api/v3"

    @property
    def name(self) -> str:
        return "coingecko"

    async def _fetch_raw_quotes(self) -> tuple[dict[str, Any], dict[str, Any]]:
        ids = self._asset_ids()
        data = await self._request(
            f"{self.BASE_URL}/simple/price",
            {"ids": ",".join(ids), "vs_currencies": "usd", "include_24hr_change": "true"},
        )
        if not isinstance(data, dict):
            raise ProviderError("CoinGecko response is not an object", provider=self.name)

        # {"bitcoin": {"usd": 43250.0, "usd_24h_change": -1.2}, ...}
        prices, changes = {}, {}
        for asset_id, symbol in ids.items():
            quote = data.get(asset_id)
            if isinstance(quote, dict):
                prices[symbol] = quote.get("usd")
                changes[symbol] = quote.get("usd_24h_change")
        return prices, changes
