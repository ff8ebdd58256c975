import asyncio
import time
from dataclasses import replace
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Iterable

from loguru import logger

from tickerbar.conf import AppSettings, Config, get_config
from tickerbar.exchanges.base import BaseExchange
from tickerbar.exchanges.binance import BinanceFutures
from tickerbar.exchanges.coinbase import Coinbase
from tickerbar.exchanges.throttle import TickThrottler
from tickerbar.governor import ConnectionGovernor
from tickerbar.log import setup as setup_logging
from tickerbar.schemas.common import (
    AggregatedPrice,
    PriceStatus,
    PriceTick,
    QuoteMode,
    Token,
    visible_symbols,
)
from tickerbar.sink import RedisPriceSink, get_redis
from tickerbar.sparkline import SparklineBuffer

config = get_config()

# stablecoin rates further than this from 1 USD are logged, but still used
PEG_TOLERANCE = Decimal("0.05")


def format_price(price: Decimal, currency_symbol: str = "$") -> str:
    places = 2 if price >= 1 else 6
    return f"{currency_symbol}{price:,.{places}f}"


class PriceService:
    """
    Owns the symbol -> AggregatedPrice table.

    Prices come from the primary (futures) provider and are converted to
    USD with stablecoin rates streamed by the FX provider. A watchdog marks
    prices stale when ticks stop and disconnected once the primary
    provider gives up reconnecting.
    """

    def __init__(
        self,
        primary_factory: Callable[[], BinanceFutures],
        fx_factory: Callable[[], Coinbase],
        config: Config = config,
        sink: RedisPriceSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.primary_factory = primary_factory
        self.fx_factory = fx_factory
        self.config = config
        self.sink = sink
        self._clock = clock

        self.primary: BinanceFutures | None = None
        self.fx: Coinbase | None = None
        self.tasks: set[asyncio.Task] = set()

        self._prices: dict[str, AggregatedPrice] = {}
        self.sparklines: dict[str, SparklineBuffer] = {}
        self.sparkline_version = 0

        self.rates: dict[str, Decimal] = {"USDT": Decimal(1), "USDC": Decimal(1)}
        self.quote_mode = QuoteMode.USDT

        self.disconnected = False
        self._stale_count = 0
        self._last_tick_at = clock()

    @property
    def prices(self):
        return MappingProxyType(self._prices)

    @property
    def usdt_rate(self) -> Decimal:
        return self.rates["USDT"]

    @property
    def usdc_rate(self) -> Decimal:
        return self.rates["USDC"]

    def sparkline_points(self, symbol: str) -> list[float]:
        buffer = self.sparklines.get(symbol)
        return buffer.get_normalized_points() if buffer else []

    def _new_sparkline(self) -> SparklineBuffer:
        return SparklineBuffer(
            window=self.config.SPARKLINE_WINDOW,
            max_points=self.config.SPARKLINE_MAX_POINTS,
        )

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def start(self, tokens: Iterable[Token], settings: AppSettings):
        await self.stop()

        self.quote_mode = settings.quote_mode
        symbols = visible_symbols(tokens)
        logger.info(f"starting with {len(symbols)} visible tokens")

        for symbol in symbols:
            self.sparklines[symbol] = self._new_sparkline()

        self.disconnected = False
        self._stale_count = 0
        self._last_tick_at = self._clock()

        try:
            self.fx = self.fx_factory()
            logger.debug("connecting to FX provider")
            await self.fx.connect()
            await self.fx.subscribe_fx_rates()
            self._spawn(self._consume(self.fx, self.process_fx_tick))

            self.primary = self.primary_factory()
            logger.debug(f"connecting to primary provider for {symbols}")
            await self.primary.connect(symbols, quote=self.quote_mode.market_quote)
            self._spawn(self._consume(self.primary, self.process_tick))

            self._spawn(self._watchdog())
        except Exception as e:
            logger.error(f"failed to start price service: {e}")
            await self.stop()
            raise

        logger.info("price service started")

    async def stop(self):
        tasks, self.tasks = self.tasks, set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        providers = [p for p in (self.fx, self.primary) if p is not None]
        self.fx = None
        self.primary = None

        results = await asyncio.gather(
            *(p.disconnect() for p in providers), return_exceptions=True
        )
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                logger.warning(f"error disconnecting {provider.id}: {result!r}")

    async def update_subscriptions(self, tokens: Iterable[Token], quote_mode: QuoteMode):
        symbols = visible_symbols(tokens)
        self.quote_mode = quote_mode

        for symbol in symbols:
            if symbol not in self.sparklines:
                self.sparklines[symbol] = self._new_sparkline()

        if self.primary is not None:
            await self.primary.update_symbols(symbols, quote=quote_mode.market_quote)

    async def _consume(self, provider: BaseExchange, process: Callable[[PriceTick], AggregatedPrice | None]):
        async for tick in provider.ticks():
            price = process(tick)
            if price is not None and self.sink is not None:
                await self.sink.publish([price])

    def process_fx_tick(self, tick: PriceTick) -> None:
        base = tick.pair.base
        if tick.pair.quote != "USD" or base not in self.rates:
            return

        if abs(tick.price - 1) > PEG_TOLERANCE:
            logger.warning(f"{base} trades off peg at {tick.price} USD")

        self.rates[base] = tick.price

    def process_tick(self, tick: PriceTick) -> AggregatedPrice:
        symbol = tick.pair.base

        self._last_tick_at = self._clock()
        self._stale_count = 0
        if self.disconnected:
            self.disconnected = False
            logger.info("price feed recovered")

        if symbol not in self.sparklines:
            self.sparklines[symbol] = self._new_sparkline()
        self.sparklines[symbol].add(tick.price)
        self.sparkline_version += 1

        price = AggregatedPrice(
            symbol=symbol,
            price=self.convert_to_usd(tick.price, tick.pair.quote),
            display_price=format_price(tick.price),
            quote_mode=self.quote_mode,
            price_change_24h=tick.price_change_24h,
            last_update=tick.timestamp,
            status=PriceStatus.LIVE,
        )
        self._prices[symbol] = price
        return price

    def convert_to_usd(self, price: Decimal, quote: str) -> Decimal:
        match quote.upper():
            case "USDT":
                return price * self.rates["USDT"]
            case "USDC":
                return price * self.rates["USDC"]
            case _:
                return price

    async def _watchdog(self):
        while True:
            await asyncio.sleep(self.config.WATCHDOG_INTERVAL)
            if self.check_staleness() and self.sink is not None:
                await self.sink.publish(self._prices.values())

    def check_staleness(self) -> bool:
        """
        One watchdog pass; returns True if any price changed status
        """
        if self.primary is not None and self.primary.is_reconnect_exhausted:
            if self.disconnected:
                return False

            self.disconnected = True
            logger.error("primary provider exhausted reconnects, marking prices disconnected")
            for symbol, price in self._prices.items():
                self._prices[symbol] = replace(
                    price, status=PriceStatus.DISCONNECTED, price=Decimal(0)
                )
            self.sparkline_version += 1
            return True

        elapsed = self._clock() - self._last_tick_at
        if elapsed <= self.config.STALE_THRESHOLD:
            self._stale_count = 0
            return False

        self._stale_count += 1
        if self._stale_count < self.config.STALE_CONFIRMATIONS:
            logger.debug(f"no ticks for {elapsed:.0f}s, waiting for confirmation")
            return False

        changed = False
        for symbol, price in self._prices.items():
            if price.status is PriceStatus.LIVE:
                self._prices[symbol] = replace(price, status=PriceStatus.STALE)
                changed = True

        if changed:
            logger.warning(f"no ticks for {elapsed:.0f}s, marking prices stale")
            self.sparkline_version += 1
        return changed


async def main():
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)

    governor = ConnectionGovernor(
        max_connections=config.MAX_CONNECTIONS,
        max_subscriptions_per_connection=config.MAX_SUBSCRIPTIONS_PER_CONNECTION,
    )
    options = config.connection_options()

    def make_primary():
        return BinanceFutures(
            config.BINANCE_FUTURES_WS_URL,
            throttler=TickThrottler(config.THROTTLE_INTERVAL),
            governor=governor,
            connection_options=options,
        )

    def make_fx():
        return Coinbase(
            config.COINBASE_WS_URL,
            throttler=TickThrottler(config.THROTTLE_INTERVAL),
            governor=governor,
            connection_options=options,
        )

    sink = RedisPriceSink(get_redis(config.REDIS_URL)) if config.REDIS_URL else None
    price_service = PriceService(make_primary, make_fx, config=config, sink=sink)

    tokens = [Token(symbol, sort_order=i) for i, symbol in enumerate(config.TOKENS)]
    await price_service.start(tokens, AppSettings(quote_mode=config.QUOTE_MODE))

    try:
        while True:
            await asyncio.sleep(config.SNAPSHOT_INTERVAL)
            for symbol, price in price_service.prices.items():
                logger.info(f"{symbol:>6} {price.display_price:>16} {price.status.value}")
    finally:
        await price_service.stop()
        if sink is not None:
            await sink.close()


if __name__ == "__main__":
    asyncio.run(main())
