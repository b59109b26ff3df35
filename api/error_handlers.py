import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.exceptions.rates import MarketDataError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
	# Degraded sources never raise past the service; this covers a request
	# arriving before startup has built it.
	@app.exception_handler(MarketDataError)
	async def market_data_error_handler(request: Request, exc: MarketDataError):
		logger.error(f'Market data error: {exc}')
		return JSONResponse(status_code=503, content={'detail': 'Market data service unavailable'})
