from decimal import Decimal
from typing_extensions import override

from loguru import logger

from tickerbar.errors import InvalidResponse
from tickerbar.exchanges.base import BaseExchange
from tickerbar.schemas.coinbase import SubscribeRequestSchema, TickerEventSchema
from tickerbar.schemas.common import DataSource, MarketPair, PriceTick, percent_change

FX_PAIRS = (
    MarketPair(base="USDT", quote="USD", source=DataSource.COINBASE),
    MarketPair(base="USDC", quote="USD", source=DataSource.COINBASE),
)


class Coinbase(BaseExchange):
    """
    Exchange ticker channel, used mainly for stablecoin-to-USD rates.

    FX tickers are emitted like any other tick (pair USDT/USD or USDC/USD)
    and the latest rates are also kept on the provider.
    """

    def __init__(self, base_url="wss://ws-feed.exchange.coinbase.com", **kwargs):
        super().__init__(source=DataSource.COINBASE, websockets_url=base_url, **kwargs)

        self.rates: dict[str, Decimal] = {p.base: Decimal(1) for p in FX_PAIRS}

    @property
    def usdt_rate(self) -> Decimal:
        return self.rates["USDT"]

    @property
    def usdc_rate(self) -> Decimal:
        return self.rates["USDC"]

    async def subscribe_fx_rates(self):
        logger.debug(f"{self.id} subscribing to FX rates")
        await self.update_pairs(set(self.subscriptions.current) | set(FX_PAIRS))

    @override
    async def subscribe(self, pairs: list[MarketPair]):
        await self._send_request("subscribe", pairs)

    @override
    async def unsubscribe(self, pairs: list[MarketPair]):
        await self._send_request("unsubscribe", pairs)

    async def _send_request(self, type_: str, pairs: list[MarketPair]):
        if not pairs:
            return

        request = SubscribeRequestSchema(
            type=type_, product_ids=[self._make_pair_label(p) for p in pairs]
        )
        logger.debug(f"{self.id} sending {type_} for {request.product_ids}")
        await self.send(request.model_dump_json())

    @override
    def _make_pair_label(self, pair: MarketPair) -> str:
        """
        Coinbase format is 'BTC-USD'
        """
        return f"{pair.base}-{pair.quote}"

    @override
    def _parse_pair_label(self, label: str) -> MarketPair:
        parts = label.split("-")
        if len(parts) != 2:
            raise InvalidResponse(f"unexpected product id {label!r}")
        base, quote = parts
        return MarketPair(base=base, quote=quote, source=self.source)

    @override
    def parse_update(self, update) -> PriceTick | None:
        if self.is_control_message(update) or update.get("type") != "ticker":
            return None

        ticker = TickerEventSchema(**update)
        pair = self._parse_pair_label(ticker.product_id)

        if pair in FX_PAIRS:
            self.rates[pair.base] = ticker.price
            logger.debug(f"{self.id} {pair.base} rate: {ticker.price}")

        return PriceTick(
            pair=pair,
            price=ticker.price,
            volume_24h=ticker.volume_24h,
            price_change_24h=percent_change(ticker.price, ticker.open_24h),
        )
