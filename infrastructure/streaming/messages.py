import json
from typing import Literal

from pydantic import BaseModel, ValidationError, field_validator

from domain.exceptions.rates import StreamMessageError
from domain.models.rates import BASE_CURRENCY, clean_rates

FOREX_MESSAGE_TYPE = "forex"


class ForexMessage(BaseModel):
    type: Literal["forex"]
    rates: dict[str, float]

    @field_validator("rates")
    @classmethod
    def normalize_rates(cls, v: dict[str, float]) -> dict[str, float]:
        rates = clean_rates(v)
        rates.pop(BASE_CURRENCY, None)
        if not rates:
            raise ValueError("rates must contain at least one positive non-base rate")
        rates[BASE_CURRENCY] = 1.0
        return rates


def parse_stream_message(raw: str | bytes) -> ForexMessage | None:
    """
    Parse one inbound frame. Returns None for message types the feed does not
    act on and raises StreamMessageError for frames that cannot be used.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StreamMessageError(f"Invalid JSON frame: {e}") from e

    if not isinstance(payload, dict):
        raise StreamMessageError("Frame is not a JSON object")
    if payload.get("type") != FOREX_MESSAGE_TYPE:
        return None

    try:
        return ForexMessage.model_validate(payload)
    except ValidationError as e:
        raise StreamMessageError(f"Invalid forex payload: {e.error_count()} error(s)") from e
