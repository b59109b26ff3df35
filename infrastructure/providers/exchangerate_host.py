from typing import Any

from domain.exceptions.rates import ProviderError

from .base import FiatSourceAdapter


class ExchangeRateHostAdapter(FiatSourceAdapter):
    BASE_URL = "https://api.exchangerate.host"

    @property
    def name(self) -> str:
        return "exchangerate_host"

    async def _fetch_raw(self) -> dict[str, Any]:
        data = await self._request(f"{self.BASE_URL}/latest", {"base": "USD"})

        if data.get("success") is False:
            error = data.get("error") or {}
            info = error.get("info", "Unknown error") if isinstance(error, dict) else str(error)
            raise ProviderError(f"exchangerate.host API error: {info}", provider=self.name)

        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ProviderError("exchangerate.host response has no rates", provider=self.name)
        return rates
