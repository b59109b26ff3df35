import logging

import httpx

from config.settings import Settings

from .base import CryptoSourceAdapter, FiatSourceAdapter
from .coincap import CoinCapAdapter, CoinCapRatesAdapter
from .coingecko import CoinGeckoAdapter
from .exchangerate_api import ExchangeRateAPIAdapter
from .exchangerate_host import ExchangeRateHostAdapter
from .openexchange import OpenExchangeAdapter

logger = logging.getLogger(__name__)


def build_adapters(
    settings: Settings, client: httpx.AsyncClient
) -> tuple[list[FiatSourceAdapter], list[CryptoSourceAdapter]]:
    """Instantiate the configured adapters, preserving the configured priority order."""
    fiat_timeout = settings.FIAT_FETCH_TIMEOUT
    crypto_timeout = settings.CRYPTO_FETCH_TIMEOUT

    fiat_factories = {
        'exchangerate_api': lambda: ExchangeRateAPIAdapter(client, fiat_timeout, settings.FIAT_CURRENCIES),
        'exchangerate_host': lambda: ExchangeRateHostAdapter(client, fiat_timeout, settings.FIAT_CURRENCIES),
        'coincap_rates': lambda: CoinCapRatesAdapter(client, fiat_timeout, settings.FIAT_CURRENCIES),
        'openexchange': lambda: OpenExchangeAdapter(
            settings.OPENEXCHANGE_APP_ID, client, fiat_timeout, settings.FIAT_CURRENCIES
        ),
    }
    crypto_factories = {
        'coincap': lambda: CoinCapAdapter(client, crypto_timeout, settings.CRYPTO_ASSETS),
        'coingecko': lambda: CoinGeckoAdapter(client, crypto_timeout, settings.CRYPTO_ASSETS),
    }

    fiat = []
    for name in settings.FIAT_SOURCES:
        if name not in fiat_factories:
            logger.warning(f'Unknown fiat source {name!r} in configuration, skipping')
            continue
        if name == 'openexchange' and not settings.OPENEXCHANGE_APP_ID:
            logger.warning('openexchange configured without OPENEXCHANGE_APP_ID, skipping')
            continue
        fiat.append(fiat_factories[name]())

    crypto = []
    for name in settings.CRYPTO_SOURCES:
        if name not in crypto_factories:
            logger.warning(f'Unknown crypto source {name!r} in configuration, skipping')
            continue
        crypto.append(crypto_factories[name]())

    logger.info(
        f'Configured sources - fiat: {[a.name for a in fiat]}, crypto: {[a.name for a in crypto]}'
    )
    return fiat, crypto
