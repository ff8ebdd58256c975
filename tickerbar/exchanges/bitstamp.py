from datetime import datetime, timezone
from typing_extensions import override

from tickerbar.exchanges.base import BaseExchange
from tickerbar.schemas.bitstamp import ChannelSchema, SubscribeRequestSchema, TradeEventSchema
from tickerbar.schemas.common import DataSource, MarketPair, PriceTick

CHANNEL_PREFIX = "live_trades_"
# longest first so that "usdt" is not read as "usd" + "t"
QUOTE_SUFFIXES = ("usdt", "usdc", "usd", "eur", "gbp", "btc", "eth")


class Bitstamp(BaseExchange):
    """
    Live trades feed; one channel per pair, e.g. 'live_trades_btcusd'
    """

    def __init__(self, base_url="wss://ws.bitstamp.net", **kwargs):
        super().__init__(source=DataSource.BITSTAMP, websockets_url=base_url, **kwargs)

    @override
    async def subscribe(self, pairs: list[MarketPair]):
        for pair in pairs:
            await self._send_request("bts:subscribe", pair)

    @override
    async def unsubscribe(self, pairs: list[MarketPair]):
        for pair in pairs:
            await self._send_request("bts:unsubscribe", pair)

    async def _send_request(self, event: str, pair: MarketPair):
        request = SubscribeRequestSchema(
            event=event, data=ChannelSchema(channel=self._make_pair_label(pair))
        )
        await self.send(request.model_dump_json())

    @override
    def _make_pair_label(self, pair: MarketPair) -> str:
        return f"{CHANNEL_PREFIX}{pair.base.lower()}{pair.quote.lower()}"

    @override
    def _parse_pair_label(self, label: str) -> MarketPair:
        name = label.removeprefix(CHANNEL_PREFIX).lower()

        for suffix in QUOTE_SUFFIXES:
            if name.endswith(suffix) and len(name) > len(suffix):
                return MarketPair(
                    base=name[: -len(suffix)], quote=suffix, source=self.source
                )

        return MarketPair(base=name, quote="usd", source=self.source)

    @override
    def parse_update(self, update) -> PriceTick | None:
        if self.is_control_message(update) or update.get("event") != "trade":
            return None

        event = TradeEventSchema(**update)
        if event.data is None:
            return None

        pair = self._parse_pair_label(event.channel)
        timestamp = datetime.fromtimestamp(float(event.data.timestamp), tz=timezone.utc)

        return PriceTick(pair=pair, price=event.data.price, timestamp=timestamp)
