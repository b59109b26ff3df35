import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType

BASE_CURRENCY = "USD"


class RateCategory(str, Enum):
    FIAT = "fiat"
    CRYPTO = "crypto"


class QuoteDirection(Enum):
    """How an upstream fiat source quotes its numbers against USD."""
    UNITS_PER_USD = "units_per_usd"
    USD_PER_UNIT = "usd_per_unit"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ServiceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def _clean(raw: Mapping[str, object], positive: bool) -> dict[str, float]:
    cleaned: dict[str, float] = {}
    for code, value in raw.items():
        if not isinstance(code, str) or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number) and (number > 0 or not positive):
            cleaned[code.strip().upper()] = number
    return cleaned


def clean_rates(raw: Mapping[str, object]) -> dict[str, float]:
    """Upper-case the codes and keep only positive, finite numeric values."""
    return _clean(raw, positive=True)


def clean_changes(raw: Mapping[str, object]) -> dict[str, float]:
    """Like clean_rates, but percentage changes may be zero or negative."""
    return _clean(raw, positive=False)


@dataclass(frozen=True)
class RateSnapshot:
    """
    Immutable bundle of rates valid as of ``timestamp``.

    ``fiat`` maps currency code -> units of that currency per 1 USD, and always
    contains ``USD: 1.0``. ``crypto`` maps asset symbol -> USD price per unit and
    ``crypto_change_24h`` maps the same symbols to their 24h change in percent.
    All maps are exposed as read-only views.
    """
    timestamp: datetime
    fiat: Mapping[str, float]
    crypto: Mapping[str, float]
    fiat_source: str = "unknown"
    crypto_source: str = "unknown"
    stale: bool = False
    crypto_change_24h: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        fiat = clean_rates(self.fiat)
        fiat[BASE_CURRENCY] = 1.0
        crypto = clean_rates(self.crypto)
        changes = {
            code: change for code, change in clean_changes(self.crypto_change_24h).items() if code in crypto
        }
        object.__setattr__(self, "fiat", MappingProxyType(fiat))
        object.__setattr__(self, "crypto", MappingProxyType(crypto))
        object.__setattr__(self, "crypto_change_24h", MappingProxyType(changes))

    def age_seconds(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        return max(0.0, (now - self.timestamp).total_seconds())

    def knows(self, code: str) -> bool:
        return code in self.fiat or code in self.crypto

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "fiat": dict(self.fiat),
            "crypto": dict(self.crypto),
            "crypto_change_24h": dict(self.crypto_change_24h),
            "fiat_source": self.fiat_source,
            "crypto_source": self.crypto_source,
            "stale": self.stale,
        }


@dataclass(frozen=True)
class SourceQuotes:
    """What one adapter call produced: normalized rates plus optional 24h changes."""
    rates: dict[str, float]
    changes: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchSuccess:
    category: RateCategory
    rates: Mapping[str, float]
    source: str
    changes: Mapping[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FetchExhausted:
    """Every adapter for a category failed; carries the last error for diagnostics."""
    category: RateCategory
    attempted: tuple[str, ...]
    last_error: Exception | None = None

    @property
    def ok(self) -> bool:
        return False


FetchResult = FetchSuccess | FetchExhausted
