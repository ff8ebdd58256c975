from typing_extensions import override

from loguru import logger

from tickerbar.errors import ConnectionFailed, RateLimitExceeded
from tickerbar.exchanges.base import BaseExchange
from tickerbar.schemas.binance import MiniTickerEventSchema, MiniTickerUpdateSchema
from tickerbar.schemas.common import DataSource, MarketPair, PriceTick, percent_change


class BinanceFutures(BaseExchange):
    """
    USDⓈ-M futures miniTicker feed over a combined stream.

    limits:

        - at most 200 streams per connection
        - 10 incoming messages per second per connection

    Subscriptions are part of the stream URL, so changing the symbol list
    means reconnecting to a new URL.
    """

    def __init__(self, base_url="wss://fstream.binance.com", quote="USDT", **kwargs):
        super().__init__(source=DataSource.BINANCE, websockets_url=base_url, **kwargs)

        self.quote = quote.upper()
        self.symbols: list[str] = []
        self.current_stream_url: str | None = None

    @property
    @override
    def stream_url(self) -> str:
        return self.build_stream_url(self.symbols, self.quote)

    def build_stream_url(self, symbols: list[str], quote: str) -> str:
        streams = "/".join(f"{s.lower()}{quote.lower()}@miniTicker" for s in symbols)
        return f"{self.base_url}/stream?streams={streams}"

    @override
    async def connect(self, symbols: list[str] | None = None, quote: str | None = None):
        if symbols is not None:
            self.symbols = [s.upper() for s in symbols]
        if quote is not None:
            self.quote = quote.upper()

        if not self.symbols:
            logger.debug(f"{self.id} has no symbols, not connecting")
            return

        self.current_stream_url = self.stream_url
        await super().connect()

    @override
    async def disconnect(self):
        await super().disconnect()
        self.current_stream_url = None

    async def update_symbols(self, symbols: list[str], quote: str | None = None):
        symbols = [s.upper() for s in symbols]
        quote = quote.upper() if quote else self.quote

        if symbols == self.symbols and quote == self.quote:
            return

        previous = self.symbols, self.quote
        self.symbols = symbols
        self.quote = quote
        new_url = self.stream_url

        if new_url == self.current_stream_url or not symbols:
            return

        if self.connection is None or self.current_stream_url is None:
            try:
                await self.connect()
            except (ConnectionFailed, RateLimitExceeded):
                self.symbols, self.quote = previous
                self.current_stream_url = None
                raise
            return

        logger.info(f"{self.id} switching to {len(symbols)} streams")
        self.current_stream_url = new_url
        try:
            await self.connection.connect(new_url)
        except (ConnectionFailed, RateLimitExceeded) as e:
            logger.warning(f"{self.id} failed to switch streams: {e}")
            self.connection.schedule_reconnect(new_url)
            raise

    @override
    async def _on_disconnect(self):
        # the socket may still serve streams that were dropped from self.symbols
        logger.warning(f"{self.id} disconnected, scheduling reconnect")
        if self.connection is not None:
            self.connection.schedule_reconnect(self.current_stream_url)

    @override
    async def subscribe(self, pairs: list[MarketPair]):
        added = [p.base for p in pairs if p.base not in self.symbols]
        if added:
            self._validate_subscriptions(pairs, len(self.symbols) + len(added))
            await self.update_symbols(self.symbols + added)

    @override
    async def unsubscribe(self, pairs: list[MarketPair]):
        removed = {p.base for p in pairs}
        await self.update_symbols([s for s in self.symbols if s not in removed])

    @override
    def _make_pair_label(self, pair: MarketPair) -> str:
        return f"{pair.base}{pair.quote}".lower()

    @override
    def _parse_pair_label(self, label: str) -> MarketPair:
        label = label.upper()
        base = label[: -len(self.quote)] if label.endswith(self.quote) else label
        return MarketPair(base=base, quote=self.quote, source=self.source)

    @override
    def parse_update(self, update) -> PriceTick | None:
        if self.is_control_message(update):
            return None

        if "data" in update:
            event = MiniTickerUpdateSchema(**update).data
        else:
            event = MiniTickerEventSchema(**update)

        pair = self._parse_pair_label(event.symbol)

        return PriceTick(
            pair=pair,
            price=event.close_price,
            volume_24h=event.total_traded_base_asset_volume,
            price_change_24h=percent_change(event.close_price, event.open_price),
        )
