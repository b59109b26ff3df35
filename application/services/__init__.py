from .fallback_fetcher import SourceFallbackFetcher
from .market_data_service import MarketDataService

__all__ = ['MarketDataService', 'SourceFallbackFetcher']
