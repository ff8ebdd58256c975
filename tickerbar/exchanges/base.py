from abc import ABC, abstractmethod
import asyncio
import json
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Iterable

from loguru import logger
from pydantic import ValidationError

from tickerbar.errors import (
    Disconnected,
    InvalidResponse,
    RateLimitExceeded,
    SubscriptionFailed,
)
from tickerbar.exchanges.connection import PersistentConnection
from tickerbar.exchanges.throttle import SubscriptionDiff, TickThrottler
from tickerbar.governor import ConnectionGovernor
from tickerbar.schemas.common import DataSource, MarketPair, PriceTick


class BaseExchange(ABC):
    """
    A streaming price provider for one exchange.

    Subclasses translate the exchange's wire format into `PriceTick`s via
    `parse_update`; everything else (connection lifecycle, throttling,
    the tick queue) lives here.
    """

    def __init__(
        self,
        source: DataSource,
        websockets_url: str,
        queue: asyncio.Queue | None = None,
        throttler: TickThrottler | None = None,
        governor: ConnectionGovernor | None = None,
        connection_options: dict | None = None,
    ):
        self.id = source.value
        self.source = source
        self.base_url = websockets_url

        self.queue: asyncio.Queue[PriceTick] = queue if queue is not None else asyncio.Queue()
        self.throttler = throttler or TickThrottler()
        self.governor = governor
        self.subscriptions = SubscriptionDiff()

        self.connection_options = connection_options or {}
        self.connection: PersistentConnection | None = None
        self._registered = False

    @property
    def stream_url(self) -> str:
        return self.base_url

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_connected

    @property
    def is_reconnect_exhausted(self) -> bool:
        return self.connection is not None and self.connection.is_reconnect_exhausted

    def _make_connection(self) -> PersistentConnection:
        return PersistentConnection(
            message_handler=self.handle_message,
            disconnect_handler=self._on_disconnect,
            reconnect_exhausted_handler=self._on_reconnect_exhausted,
            reconnected_handler=self._on_reconnected,
            **self.connection_options,
        )

    async def connect(self):
        if self.connection is None:
            self.connection = self._make_connection()

        self._register()
        try:
            await self.connection.connect(self.stream_url)
        except Exception:
            self._unregister()
            raise

        logger.info(f"{self.id} connected to {self.stream_url}")

    async def disconnect(self):
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.disconnect()
            logger.info(f"{self.id} disconnected")
        self._unregister()
        self.subscriptions.clear()
        self.throttler.reset()

    def _register(self):
        if self.governor is None or self._registered:
            return
        if not self.governor.register_connection():
            raise RateLimitExceeded(self.governor.last_error)
        self._registered = True

    def _unregister(self):
        if self.governor is not None and self._registered:
            self.governor.unregister_connection()
        self._registered = False

    def _validate_subscriptions(self, pairs: list[MarketPair], total: int):
        if self.governor is None or not pairs:
            return
        if not self.governor.validate_subscription_count(total):
            raise SubscriptionFailed(pairs[0], self.governor.last_error)

    async def update_pairs(self, desired: Iterable[MarketPair]):
        """
        Bring the live subscriptions in line with `desired`
        """
        desired = set(desired)
        self._validate_subscriptions(list(desired - self.subscriptions.current), len(desired))
        to_subscribe, to_unsubscribe = self.subscriptions.compute(desired)

        if to_unsubscribe:
            await self.unsubscribe(to_unsubscribe)
        if to_subscribe:
            await self.subscribe(to_subscribe)

    async def send(self, payload: str):
        if self.connection is None:
            raise Disconnected(f"{self.id} is not connected")
        await self.connection.send(payload)

    async def ticks(self) -> AsyncIterator[PriceTick]:
        while True:
            yield await self.queue.get()

    def stream_update(self, tick: PriceTick):
        try:
            self.queue.put_nowait(tick)
        except asyncio.QueueFull:
            logger.warning(f"{self.id} tick queue is full, dropping {tick.pair.symbol}")

    async def handle_message(self, message: str | bytes):
        try:
            update = json.loads(message, parse_float=Decimal)
            tick = self.parse_update(update)
        except (
            ValueError, OverflowError, ValidationError, InvalidOperation, InvalidResponse
        ) as e:
            logger.trace(f"{self.id} dropped undecodable message: {e!r}")
            return

        if tick is None:
            return

        if not self.throttler.should_emit(tick.pair.symbol):
            return

        logger.trace(f"{self.id} tick {tick.pair.symbol} = {tick.price}")
        self.stream_update(tick)

    @staticmethod
    def is_control_message(update) -> bool:
        return not isinstance(update, dict) or "id" in update or "result" in update

    async def _on_disconnect(self):
        logger.warning(f"{self.id} disconnected, scheduling reconnect")
        if self.connection is not None:
            self.connection.schedule_reconnect(self.stream_url)

    async def _on_reconnect_exhausted(self):
        logger.error(f"{self.id} reconnect exhausted, prices will show as unavailable")

    async def _on_reconnected(self):
        pairs = list(self.subscriptions.current)
        if pairs:
            logger.info(f"{self.id} restoring {len(pairs)} subscriptions")
            await self.subscribe(pairs)

    @abstractmethod
    def _make_pair_label(self, pair: MarketPair) -> str:
        """
        Return an identifier for a trading pair in a format supported by the exchange
        """
        raise NotImplementedError

    @abstractmethod
    def _parse_pair_label(self, label: str) -> MarketPair:
        """
        Parse an exchange identifier back into a trading pair
        """
        raise NotImplementedError

    @abstractmethod
    def parse_update(self, update) -> PriceTick | None:
        """
        Turn one decoded message into a tick, or None for messages that carry no price
        """
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, pairs: list[MarketPair]):
        raise NotImplementedError

    @abstractmethod
    async def unsubscribe(self, pairs: list[MarketPair]):
        raise NotImplementedError
