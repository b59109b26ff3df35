from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from api.dependencies import get_market_data_service
from api.schemas import ConversionRequest, ConversionResponse, SnapshotResponse
from application.services import MarketDataService

router = APIRouter(prefix='/api/v1', tags=['rates'])


@router.get(
	'/rates',
	response_model=SnapshotResponse,
	status_code=status.HTTP_200_OK,
	summary='Current rate snapshot',
)
async def get_rates(
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
) -> SnapshotResponse:
	return SnapshotResponse.from_snapshot(service.get_current_snapshot())


@router.post(
	'/rates/refresh',
	response_model=SnapshotResponse,
	status_code=status.HTTP_200_OK,
	summary='Force an out-of-band refresh',
)
async def refresh_rates(
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
) -> SnapshotResponse:
	await service.refresh_now()
	return SnapshotResponse.from_snapshot(service.get_current_snapshot())


@router.post(
	'/convert',
	response_model=ConversionResponse,
	status_code=status.HTTP_200_OK,
	summary='Convert an amount between fiat currencies and crypto assets',
)
async def convert(
	request: ConversionRequest,
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
) -> ConversionResponse:
	snapshot = service.get_current_snapshot()
	return ConversionResponse(
		from_currency=request.from_currency,
		to_currency=request.to_currency,
		original_amount=request.amount,
		converted_amount=service.convert(request.amount, request.from_currency, request.to_currency),
		exchange_rate=service.exchange_rate(request.from_currency, request.to_currency),
		timestamp=snapshot.timestamp,
		stale=snapshot.stale,
	)


@router.get(
	'/rate/{from_currency}/{to_currency}',
	response_model=ConversionResponse,
	status_code=status.HTTP_200_OK,
	summary='Exchange rate between two codes',
)
async def get_exchange_rate(
	from_currency: Annotated[str, Path(min_length=2, max_length=10)],
	to_currency: Annotated[str, Path(min_length=2, max_length=10)],
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
) -> ConversionResponse:
	from_currency = from_currency.upper()
	to_currency = to_currency.upper()
	snapshot = service.get_current_snapshot()
	rate = service.exchange_rate(from_currency, to_currency)
	return ConversionResponse(
		from_currency=from_currency,
		to_currency=to_currency,
		original_amount=1.0,
		converted_amount=rate,
		exchange_rate=rate,
		timestamp=snapshot.timestamp,
		stale=snapshot.stale,
	)
