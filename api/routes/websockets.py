import asyncio
import contextlib
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import get_market_data_service
from api.schemas import SnapshotResponse
from application.services import MarketDataService
from domain.models.rates import RateSnapshot

router = APIRouter(prefix='/api/v1', tags=['websockets'])

logger = logging.getLogger(__name__)

MAX_PENDING_SNAPSHOTS = 16


def _put_latest(queue: asyncio.Queue, snapshot: RateSnapshot) -> None:
	# Slow clients skip intermediate snapshots rather than grow the queue.
	if queue.full():
		queue.get_nowait()
	queue.put_nowait(snapshot)


@router.websocket('/ws/rates')
async def websocket_rates_endpoint(
	websocket: WebSocket,
	service: Annotated[MarketDataService, Depends(get_market_data_service)],
):
	"""
	Pushes every rate snapshot to the client as it is produced, starting with
	the current one. Anything the client sends is ignored.

	Message format sent to client:
	{
		"type": "rates",
		"last_updated": "2025-10-01T10:00:00Z",
		"base_currency": "USD",
		"fiat": {"USD": 1.0, "EUR": 0.92},
		"crypto": {"BTC": 85000.0},
		"crypto_change_24h": {"BTC": -1.25},
		"fiat_source": "stream",
		"crypto_source": "coincap",
		"stale": false
	}
	"""
	await websocket.accept()
	loop = asyncio.get_running_loop()
	queue: asyncio.Queue[RateSnapshot] = asyncio.Queue(maxsize=MAX_PENDING_SNAPSHOTS)

	def enqueue(snapshot: RateSnapshot) -> None:
		loop.call_soon_threadsafe(_put_latest, queue, snapshot)

	async def send_updates() -> None:
		while True:
			snapshot = await queue.get()
			payload = SnapshotResponse.from_snapshot(snapshot).model_dump(mode='json')
			await websocket.send_json({'type': 'rates', **payload})

	async def wait_for_disconnect() -> None:
		while True:
			message = await websocket.receive()
			if message['type'] == 'websocket.disconnect':
				return

	subscription = service.subscribe(enqueue)
	logger.info('WebSocket client subscribed to rate updates')

	sender = asyncio.create_task(send_updates())
	receiver = asyncio.create_task(wait_for_disconnect())
	try:
		done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
		for task in pending:
			task.cancel()
			with contextlib.suppress(asyncio.CancelledError):
				await task
		for task in done:
			if task.exception() is not None:
				logger.error(f'WebSocket connection error: {task.exception()}')
	finally:
		sender.cancel()
		receiver.cancel()
		subscription.unsubscribe()
		logger.info('WebSocket client disconnected')
