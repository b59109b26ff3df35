import math

from pydantic import BaseModel, Field, field_validator


class ConversionRequest(BaseModel):
	from_currency: str = Field(..., min_length=2, max_length=10)
	to_currency: str = Field(..., min_length=2, max_length=10)
	amount: float = Field(..., ge=0)

	@field_validator('from_currency', 'to_currency')
	@classmethod
	def uppercase_currency(cls, v: str):
		return v.strip().upper()

	@field_validator('amount')
	@classmethod
	def amount_must_be_finite(cls, v: float):
		if not math.isfinite(v):
			raise ValueError('amount must be a finite number')
		return v

	class ConfigDict:
		json_schema_extra = {
			'example': {'from_currency': 'EUR', 'to_currency': 'BTC', 'amount': 250.00}
		}
