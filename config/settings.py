from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
	# Application
	APP_NAME: str = 'Market Data Aggregator'
	DEBUG: bool = False
	HOST: str = '0.0.0.0'
	PORT: int = 8000

	# Logging
	LOG_LEVEL: str = 'INFO'
	LOG_DIRECTORY: str = 'logs'
	LOG_TO_FILE: bool = False

	# Streaming forex feed
	STREAM_ENABLED: bool = True
	STREAM_URL: str = 'wss://stream.valore.capital'
	STREAM_HANDSHAKE_TIMEOUT: float = 10.0
	STREAM_RECONNECT_BASE_DELAY: float = 1.0
	STREAM_RECONNECT_MAX_DELAY: float = 30.0
	STREAM_MAX_RECONNECT_ATTEMPTS: int = 10

	# Fallback HTTP sources, tried in the listed order
	FIAT_SOURCES: list[str] = ['exchangerate_api', 'exchangerate_host', 'coincap_rates']
	CRYPTO_SOURCES: list[str] = ['coincap', 'coingecko']
	FIAT_FETCH_TIMEOUT: float = 5.0
	CRYPTO_FETCH_TIMEOUT: float = 10.0
	OPENEXCHANGE_APP_ID: str = ''

	# Caching and refresh
	FIAT_CACHE_TTL: float = 30.0
	CRYPTO_CACHE_TTL: float = 30.0
	REFRESH_INTERVAL: float = 300.0

	# Tracked instruments
	FIAT_CURRENCIES: list[str] = ['USD', 'EUR', 'CAD', 'GBP', 'JPY', 'AUD', 'CHF']
	CRYPTO_ASSETS: list[str] = ['BTC', 'ETH', 'USDT', 'ADA', 'DOT', 'LINK', 'XRP', 'SOL', 'LTC', 'BCH']

	# Last-resort table served when nothing fresher has ever been obtained
	FALLBACK_FIAT_RATES: dict[str, float] = {
		'USD': 1.0,
		'EUR': 0.92,
		'CAD': 1.35,
		'GBP': 0.78,
		'JPY': 150.0,
		'AUD': 1.52,
		'CHF': 0.88,
	}
	FALLBACK_CRYPTO_PRICES: dict[str, float] = {
		'BTC': 85000.0,
		'ETH': 3200.0,
		'USDT': 1.0,
		'ADA': 0.9,
		'DOT': 7.0,
		'LINK': 22.0,
		'XRP': 0.55,
		'SOL': 98.0,
		'LTC': 85.0,
		'BCH': 320.0,
	}

	model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')


@lru_cache
def get_settings() -> Settings:
	return Settings()
