import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType

import aiohttp
from tenacity import RetryCallState, wait_exponential

from domain.exceptions.rates import StreamMessageError
from domain.models.rates import ConnectionState
from infrastructure.notifications.subscribers import SubscriberRegistry, Subscription

from .messages import parse_stream_message

logger = logging.getLogger(__name__)

RateListener = Callable[[Mapping[str, float]], None]


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay in seconds before reconnect ``attempt`` (0-based): min(base * 2**attempt, max)."""
    # Reconnects are scheduled on loop timers, not made by a retried call, so
    # only tenacity's wait curve is used, evaluated for a synthetic attempt.
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = attempt + 1
    return wait_exponential(multiplier=base_delay, max=max_delay)(state)


class ForexStreamFeed:
    """
    One long-lived websocket connection to the real-time forex provider.

    Every ``forex`` frame replaces the held rate map and is pushed, complete,
    to all listeners in subscription order. Closing for any reason other than
    ``disconnect()`` schedules a reconnect with capped exponential backoff,
    until ``max_reconnect_attempts`` consecutive failures have been reached.

    The connection state, attempt counter and pending reconnect handle are
    plain fields so ``disconnect()`` can cancel them deterministically.
    Every transition is published to ``subscribe_state`` listeners.
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession | None = None,
        handshake_timeout: float = 10.0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        max_reconnect_attempts: int = 10,
        heartbeat: float | None = 30.0,
    ):
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.heartbeat = heartbeat

        self._session = session
        self._owns_session = session is None

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._backoff_delay: float | None = None
        self._should_reconnect = False
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

        self._rates: Mapping[str, float] = MappingProxyType({})
        self._listeners: SubscriberRegistry[Mapping[str, float]] = SubscriberRegistry("forex-stream")
        self._state_listeners: SubscriberRegistry[ConnectionState] = SubscriberRegistry("forex-stream-state")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def backoff_delay(self) -> float | None:
        """Delay used for the most recently scheduled reconnect."""
        return self._backoff_delay

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def get_rates(self) -> dict[str, float]:
        return dict(self._rates)

    def subscribe(self, callback: RateListener) -> Subscription:
        """Register a listener; it immediately receives the last known map, if any."""
        return self._listeners.add(callback, replay=self._rates if self._rates else None)

    def subscribe_state(self, callback: Callable[[ConnectionState], None]) -> Subscription:
        """Register a listener called with the new state on every connection state transition."""
        return self._state_listeners.add(callback)

    def connect(self) -> None:
        """
        Open the connection unless one is already open or opening. An explicit
        call re-enables auto-reconnect and starts a fresh attempt budget.
        Must be called from a running event loop.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._cancel_pending_reconnect()
        self._open()

    def reconnect(self) -> None:
        self.disconnect()
        self.connect()

    def disconnect(self) -> None:
        """Stop the feed: cancel any pending reconnect, close the socket, disable auto-reconnect."""
        self._should_reconnect = False
        self._cancel_pending_reconnect()

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        if self._state is not ConnectionState.DISCONNECTED:
            logger.info("[ForexStream] Disconnected")
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect and release the HTTP session if this feed created it."""
        task = self._task
        self.disconnect()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="forex-stream")

    async def _run(self) -> None:
        logger.info(f"[ForexStream] Connecting to {self.url}...")
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=self.heartbeat),
                timeout=self.handshake_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[ForexStream] Handshake timed out after {self.handshake_timeout}s")
            self._on_closed()
            return
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"[ForexStream] Connection failed: {e.__class__.__name__}: {e}")
            self._on_closed()
            return

        self._ws = ws
        self._reconnect_attempts = 0
        self._backoff_delay = None
        self._set_state(ConnectionState.CONNECTED)
        logger.info("[ForexStream] Connected successfully")

        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(message.data)
                elif message.type == aiohttp.WSMsgType.BINARY:
                    self._handle_message(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    # Terminal state is decided by the close that follows.
                    logger.error(f"[ForexStream] WebSocket error: {ws.exception()}")
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"[ForexStream] Connection lost: {e.__class__.__name__}: {e}")
        finally:
            if not ws.closed:
                await ws.close()

        logger.info("[ForexStream] Connection closed")
        self._on_closed()

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = parse_stream_message(raw)
        except StreamMessageError as e:
            logger.warning(f"[ForexStream] Dropping malformed message: {e}")
            return

        if message is None:
            return

        self._rates = MappingProxyType(message.rates)
        self._listeners.publish(self._rates)

    def _on_closed(self) -> None:
        self._ws = None
        self._task = None
        self._set_state(ConnectionState.DISCONNECTED)

        if not self._should_reconnect:
            return
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                f"[ForexStream] Giving up after {self._reconnect_attempts} consecutive failed attempts; "
                "call connect() or reconnect() to resume"
            )
            return

        delay = backoff_delay(self._reconnect_attempts, self.reconnect_base_delay, self.reconnect_max_delay)
        self._backoff_delay = delay
        self._reconnect_attempts += 1
        logger.info(
            f"[ForexStream] Reconnecting in {delay:.1f}s "
            f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._should_reconnect and self._state is ConnectionState.DISCONNECTED:
            self._open()

    def _cancel_pending_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"[ForexStream] {self._state.value} -> {state.value}")
            self._state = state
            self._state_listeners.publish(state)
