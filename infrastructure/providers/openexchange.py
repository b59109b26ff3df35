from typing import Any

import httpx

from domain.exceptions.rates import ProviderError

from .base import FiatSourceAdapter


class OpenExchangeAdapter(FiatSourceAdapter):
    """Open Exchange Rates; the free plan only quotes against USD, which is what we need."""

    BASE_URL = "https://openexchangerates.org/api"

    def __init__(self, app_id: str, client: httpx.AsyncClient | None = None, timeout: float = 5.0, symbols=None):
        super().__init__(client=client, timeout=timeout, symbols=symbols)
        self.app_id = app_id

    @property
    def name(self) -> str:
        return "openexchange"

    async def _fetch_raw(self) -> dict[str, Any]:
        if not self.app_id:
            raise ProviderError("OpenExchange app id is not configured", provider=self.name)

        data = await self._request(f"{self.BASE_URL}/latest.json", {"app_id": self.app_id, "base": "USD"})
        if data.get("error"):
            message = data.get("description", data.get("message", "Unknown error"))
            raise ProviderError(f"OpenExchange API error: {message}", provider=self.name)

        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ProviderError("OpenExchange response has no rates", provider=self.name)
        return rates
