import logging

import httpx

from application.services import MarketDataService, SourceFallbackFetcher
from config.settings import Settings, get_settings
from domain.exceptions.rates import MarketDataError
from domain.models.rates import RateCategory
from infrastructure.cache.rate_cache import RateCache
from infrastructure.providers import build_adapters
from infrastructure.streaming.forex_feed import ForexStreamFeed

logger = logging.getLogger(__name__)


class AppDependencies:
	"""Container for application-wide singleton dependencies."""

	http_client: httpx.AsyncClient | None = None
	feed: ForexStreamFeed | None = None
	market_data: MarketDataService | None = None


deps = AppDependencies()


def build_market_data_service(settings: Settings, http_client: httpx.AsyncClient) -> MarketDataService:
	fiat_adapters, crypto_adapters = build_adapters(settings, http_client)

	feed = None
	if settings.STREAM_ENABLED:
		feed = ForexStreamFeed(
			url=settings.STREAM_URL,
			handshake_timeout=settings.STREAM_HANDSHAKE_TIMEOUT,
			reconnect_base_delay=settings.STREAM_RECONNECT_BASE_DELAY,
			reconnect_max_delay=settings.STREAM_RECONNECT_MAX_DELAY,
			max_reconnect_attempts=settings.STREAM_MAX_RECONNECT_ATTEMPTS,
		)
	deps.feed = feed

	cache = RateCache(
		fallback={
			RateCategory.FIAT: settings.FALLBACK_FIAT_RATES,
			RateCategory.CRYPTO: settings.FALLBACK_CRYPTO_PRICES,
		}
	)
	return MarketDataService(
		fetcher=SourceFallbackFetcher(default_timeout=max(settings.FIAT_FETCH_TIMEOUT, settings.CRYPTO_FETCH_TIMEOUT)),
		cache=cache,
		fiat_adapters=fiat_adapters,
		crypto_adapters=crypto_adapters,
		feed=feed,
		fiat_ttl=settings.FIAT_CACHE_TTL,
		crypto_ttl=settings.CRYPTO_CACHE_TTL,
		refresh_interval=settings.REFRESH_INTERVAL,
	)


def init_dependencies() -> None:
	"""Initialize all singleton dependencies. Called at app startup."""
	logger.info('Initializing dependencies...')
	settings = get_settings()

	deps.http_client = httpx.AsyncClient(
		headers={'accept': 'application/json'},
		limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
	)
	deps.market_data = build_market_data_service(settings, deps.http_client)
	logger.info('Dependencies initialized')


async def cleanup_dependencies() -> None:
	logger.info('Cleaning up dependencies...')

	if deps.market_data:
		await deps.market_data.teardown()
	if deps.feed:
		await deps.feed.aclose()
	if deps.http_client:
		await deps.http_client.aclose()

	deps.market_data = None
	deps.feed = None
	deps.http_client = None
	logger.info('Cleanup complete')


def get_market_data_service() -> MarketDataService:
	if deps.market_data is None:
		raise MarketDataError('Market data service not initialized')
	return deps.market_data
