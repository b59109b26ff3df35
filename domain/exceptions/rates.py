class MarketDataError(Exception):
    pass


class ProviderError(MarketDataError):
    """An upstream data source failed to produce a usable response."""

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class StreamMessageError(MarketDataError):
    pass
