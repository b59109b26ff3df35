from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from domain.models.rates import RateSnapshot


class SnapshotResponse(BaseModel):
	last_updated: datetime = Field(..., description='When this snapshot was produced')
	base_currency: str = Field('USD', description='Fiat rates are units of currency per 1 base unit')
	fiat: dict[str, float] = Field(..., description='Fiat currency code -> units per USD')
	crypto: dict[str, float] = Field(..., description='Crypto asset symbol -> USD price')
	crypto_change_24h: dict[str, float] = Field(
		default_factory=dict, description='Crypto asset symbol -> 24h price change in percent'
	)
	fiat_source: str = Field(..., description='Where the fiat rates came from')
	crypto_source: str = Field(..., description='Where the crypto prices came from')
	stale: bool = Field(..., description='True when served from old or static fallback data')

	@classmethod
	def from_snapshot(cls, snapshot: RateSnapshot) -> 'SnapshotResponse':
		return cls(
			last_updated=snapshot.timestamp,
			fiat=dict(snapshot.fiat),
			crypto=dict(snapshot.crypto),
			crypto_change_24h=dict(snapshot.crypto_change_24h),
			fiat_source=snapshot.fiat_source,
			crypto_source=snapshot.crypto_source,
			stale=snapshot.stale,
		)


class ConversionResponse(BaseModel):
	from_currency: str = Field(..., description='Source currency code')
	to_currency: str = Field(..., description='Target currency code')
	original_amount: float = Field(..., description='Original amount requested')
	converted_amount: float = Field(..., description='Converted amount')
	exchange_rate: float = Field(..., description='Units of target per 1 unit of source')
	timestamp: datetime = Field(..., description='When the rates used were produced')
	stale: bool = Field(..., description='True when the rates used are stale')

	class ConfigDict:
		json_schema_extra = {
			'example': {
				'from_currency': 'USD',
				'to_currency': 'EUR',
				'original_amount': 100.00,
				'converted_amount': 92.00,
				'exchange_rate': 0.92,
				'timestamp': '2025-09-27T10:30:00Z',
				'stale': False,
			}
		}


class HealthResponse(BaseModel):
	status: str = Field(..., description='healthy, degraded or unhealthy')
	timestamp: datetime
	service: dict[str, Any]
