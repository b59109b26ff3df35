from typing import Any

from domain.exceptions.rates import ProviderError

from .base import FiatSourceAdapter


class ExchangeRateAPIAdapter(FiatSourceAdapter):
    BASE_URL = "https://api.exchangerate-api.com/v4"

    @property
    def name(self) -> str:
        return "exchangerate_api"

    async def _fetch_raw(self) -> dict[str, Any]:
        data = await self._request(f"{self.BASE_URL}/latest/USD")

        base = data.get("base", "USD")
        if base != "USD":
            raise ProviderError(f"ExchangeRate-API returned base {base}, expected USD", provider=self.name)

        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ProviderError("ExchangeRate-API response has no rates", provider=self.name)
        return rates
