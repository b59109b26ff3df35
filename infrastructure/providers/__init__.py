from .base import CryptoSourceAdapter, FiatSourceAdapter, SourceAdapter
from .coincap import CoinCapAdapter, CoinCapRatesAdapter
from .coingecko import CoinGeckoAdapter
from .exchangerate_api import ExchangeRateAPIAdapter
from .exchangerate_host import ExchangeRateHostAdapter
from .openexchange import OpenExchangeAdapter
from .registry import build_adapters

__all__ = [
    'SourceAdapter',
    'FiatSourceAdapter',
    'CryptoSourceAdapter',
    'CoinCapAdapter',
    'CoinCapRatesAdapter',
    'CoinGeckoAdapter',
    'ExchangeRateAPIAdapter',
    'ExchangeRateHostAdapter',
    'OpenExchangeAdapter',
    'build_adapters',
]
