from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from api.dependencies import get_market_data_service
from api.schemas import HealthResponse
from application.services import MarketDataService
from domain.models.rates import ConnectionState, ServiceState

router = APIRouter(prefix='/api/v1', tags=['health'])


@router.get(
	'/health',
	response_model=HealthResponse,
	summary='Market data health check',
)
async def health_check(
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
) -> HealthResponse:
	"""
	healthy: service ready and serving fresh data.
	degraded: serving stale/fallback data, or the stream is down while enabled.
	unhealthy: service not initialized.
	"""
	info = service.status()

	if info['state'] != ServiceState.READY.value:
		status = 'unhealthy'
	elif info['snapshot']['stale'] or (
		info['stream']['enabled'] and info['stream']['state'] != ConnectionState.CONNECTED.value
	):
		status = 'degraded'
	else:
		status = 'healthy'

	return HealthResponse(status=status, timestamp=datetime.now(UTC), service=info)
