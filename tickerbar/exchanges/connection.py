import asyncio
from enum import Enum
from typing import Awaitable, Callable

from loguru import logger
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from tickerbar.errors import (
    ConnectionFailed,
    Disconnected,
    RateLimitExceeded,
    ReconnectExhausted,
)

Handler = Callable[[], Awaitable[None]]
MessageHandler = Callable[[str | bytes], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"


class PersistentConnection:
    """
    One logical websocket connection that recovers by itself.

    After `connect` the connection owns two tasks: a receive loop feeding
    every message to `message_handler` and a ping loop sending a keepalive
    every `ping_interval` seconds. A receive or ping failure calls
    `disconnect_handler`, which usually answers with `schedule_reconnect`.
    Reconnect attempts back off exponentially and stop for good after
    `max_attempts`, at which point `reconnect_exhausted_handler` is called.
    """

    def __init__(
        self,
        message_handler: MessageHandler | None = None,
        disconnect_handler: Handler | None = None,
        reconnect_exhausted_handler: Handler | None = None,
        reconnected_handler: Handler | None = None,
        *,
        connector=connect,
        settle_delay: float = 1.0,
        open_timeout: float = 10.0,
        ping_interval: float = 30.0,
        ping_timeout: float = 10.0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        max_attempts: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.message_handler = message_handler
        self.disconnect_handler = disconnect_handler
        self.reconnect_exhausted_handler = reconnect_exhausted_handler
        self.reconnected_handler = reconnected_handler

        self._connector = connector
        self.settle_delay = settle_delay
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.url: str | None = None
        self.reconnect_attempt = 0

        self._ws = None
        self._receive_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._suppress_reconnect = False

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_reconnect_exhausted(self) -> bool:
        return self.state is ConnectionState.RECONNECT_EXHAUSTED

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    async def connect(self, url: str):
        """
        Open a fresh connection to `url`, replacing any existing one.

        Cancels a reconnect cycle in flight and re-enables automatic
        reconnection.
        """
        task = self._reconnect_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._reconnect_task = None

        self._suppress_reconnect = False
        self.reconnect_attempt = 0
        await self._open(url)

    async def disconnect(self):
        self._suppress_reconnect = True

        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self._teardown()
        self.state = ConnectionState.DISCONNECTED

    def reset_attempts(self):
        self.reconnect_attempt = 0
        if self.state is ConnectionState.RECONNECT_EXHAUSTED:
            self.state = ConnectionState.DISCONNECTED

    async def send(self, message: str | bytes):
        if self._ws is None or self.state is not ConnectionState.CONNECTED:
            if self.state is ConnectionState.RECONNECT_EXHAUSTED:
                raise ReconnectExhausted(f"reconnect attempts exhausted for {self.url}")
            raise Disconnected(f"not connected to {self.url}")

        try:
            await self._ws.send(message)
        except ConnectionClosed as e:
            raise Disconnected(f"connection to {self.url} closed while sending") from e

    def schedule_reconnect(self, url: str | None = None) -> asyncio.Task | None:
        """
        Start the reconnect loop unless one is already running, the
        connection was closed on purpose or attempts are exhausted
        """
        if self.is_reconnecting:
            logger.debug(f"reconnect to {self.url} already in flight")
            return None

        if self._suppress_reconnect or self.is_reconnect_exhausted:
            return None

        url = url or self.url
        if url is None:
            return None

        self._reconnect_task = asyncio.create_task(self._reconnect_loop(url))
        return self._reconnect_task

    async def _reconnect_loop(self, url: str):
        while self.reconnect_attempt < self.max_attempts:
            self.reconnect_attempt += 1
            delay = self.backoff_delay(self.reconnect_attempt)
            self.state = ConnectionState.RECONNECT_PENDING

            logger.info(
                f"reconnecting to {url} in {delay:.1f}s "
                f"(attempt {self.reconnect_attempt}/{self.max_attempts})"
            )
            await self._sleep(delay)

            if self._suppress_reconnect:
                return

            try:
                await self._open(url)
            except (ConnectionFailed, RateLimitExceeded) as e:
                logger.warning(f"reconnect attempt {self.reconnect_attempt} failed: {e}")
                continue

            logger.info(f"reconnected to {url}")
            self._reconnect_task = None
            if self.reconnected_handler is not None:
                try:
                    await self.reconnected_handler()
                except Exception:
                    logger.exception("reconnected handler failed")
            return

        self.state = ConnectionState.RECONNECT_EXHAUSTED
        self._reconnect_task = None
        logger.error(f"giving up on {url} after {self.max_attempts} reconnect attempts")

        if self.reconnect_exhausted_handler is not None:
            await self.reconnect_exhausted_handler()

    async def _open(self, url: str):
        await self._teardown()

        self.url = url
        self.state = ConnectionState.CONNECTING
        logger.debug(f"connecting to {url}")

        try:
            ws = await self._connector(
                url, ping_interval=None, open_timeout=self.open_timeout
            )
        except InvalidStatus as e:
            self.state = ConnectionState.DISCONNECTED
            if e.response.status_code == 429:
                raise RateLimitExceeded(f"{url} rejected the handshake with 429") from e
            raise ConnectionFailed(url, e) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self.state = ConnectionState.DISCONNECTED
            raise ConnectionFailed(url, e) from e

        self._ws = ws
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

        self.state = ConnectionState.CONNECTED
        self.reconnect_attempt = 0
        logger.debug(f"connection to {url} established")

        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._ping_task = asyncio.create_task(self._ping_loop(ws))

    async def _teardown(self):
        current = asyncio.current_task()
        tasks = [
            t for t in (self._receive_task, self._ping_task) if t is not None and t is not current
        ]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._receive_task = None
        self._ping_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"error closing websocket: {e!r}")

    async def _receive_loop(self, ws):
        while ws is self._ws:
            try:
                message = await ws.recv()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"receive error on {self.url}: {e!r}")
                if ws is self._ws:
                    await self._handle_disconnect()
                return

            if self.message_handler is None:
                continue

            try:
                await self.message_handler(message)
            except Exception:
                logger.exception("message handler failed")

    async def _ping_loop(self, ws):
        while ws is self._ws:
            await asyncio.sleep(self.ping_interval)
            if ws is not self._ws:
                return

            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=self.ping_timeout)
            except (ConnectionClosed, OSError, asyncio.TimeoutError) as e:
                logger.debug(f"ping failed on {self.url}: {e!r}")
                if ws is self._ws:
                    await self._handle_disconnect()
                return

    async def _handle_disconnect(self):
        if self.state is not ConnectionState.CONNECTED:
            return

        self.state = ConnectionState.DISCONNECTED
        logger.warning(f"lost connection to {self.url}")

        if self.disconnect_handler is not None:
            await self.disconnect_handler()
