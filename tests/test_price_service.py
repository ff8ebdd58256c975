import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import FakeConnector, FakeRedis, settle
from tickerbar.conf import AppSettings, Config
from tickerbar.errors import ConnectionFailed
from tickerbar.exchanges.binance import BinanceFutures
from tickerbar.exchanges.coinbase import Coinbase
from tickerbar.run import PriceService, format_price
from tickerbar.schemas.common import (
    DataSource,
    MarketPair,
    PriceStatus,
    PriceTick,
    QuoteMode,
    Token,
)
from tickerbar.sink import RedisPriceSink

BTC_TICK = {"e": "24hrMiniTicker", "s": "BTCUSDT", "c": "65000.00", "o": "64000.00", "v": "10"}


def tick(base="BTC", price="65000.00", quote="USDT", change=None):
    return PriceTick(
        pair=MarketPair(base, quote, DataSource.BINANCE),
        price=Decimal(price),
        price_change_24h=change,
    )


def fx_tick(base, price):
    return PriceTick(pair=MarketPair(base, "USD", DataSource.COINBASE), price=Decimal(price))


@pytest.fixture
def config():
    return Config(STALE_THRESHOLD=30, STALE_CONFIRMATIONS=2, RECONNECT_MAX_ATTEMPTS=2)


@pytest.fixture
def service(connection_options, config, clock):
    options = {**connection_options, "max_attempts": config.RECONNECT_MAX_ATTEMPTS}
    return PriceService(
        primary_factory=lambda: BinanceFutures(connection_options=options),
        fx_factory=lambda: Coinbase(connection_options=options),
        config=config,
        clock=clock,
    )


@pytest.mark.parametrize(
    "price, expected",
    [
        ("65000", "$65,000.00"),
        ("1", "$1.00"),
        ("1234567.891", "$1,234,567.89"),
        ("0.1234567", "$0.123457"),
    ],
)
def test_format_price(price, expected):
    assert format_price(Decimal(price)) == expected


def test_tick_becomes_live_price(service):
    price = service.process_tick(tick(change=Decimal("1.5625")))

    assert service.prices["BTC"] is price
    assert price.price == Decimal("65000.00")
    assert price.display_price == "$65,000.00"
    assert price.price_change_24h == Decimal("1.5625")
    assert price.status is PriceStatus.LIVE
    assert service.sparkline_version == 1


def test_usdt_rate_is_applied(service):
    service.process_fx_tick(fx_tick("USDT", "1.001"))
    price = service.process_tick(tick())

    assert service.usdt_rate == Decimal("1.001")
    assert price.price == Decimal("65065.00")
    assert price.display_price == "$65,000.00"


def test_usdc_quote_uses_usdc_rate(service):
    service.process_fx_tick(fx_tick("USDC", "0.999"))

    assert service.convert_to_usd(Decimal("100"), "USDC") == Decimal("99.9")
    assert service.convert_to_usd(Decimal("100"), "USD") == Decimal("100")


def test_off_peg_rate_is_still_used(service):
    service.process_fx_tick(fx_tick("USDT", "0.90"))

    assert service.usdt_rate == Decimal("0.90")


def test_non_stablecoin_fx_ticks_are_ignored(service):
    service.process_fx_tick(fx_tick("BTC", "65000"))
    service.process_fx_tick(PriceTick(pair=MarketPair("USDT", "EUR", DataSource.COINBASE), price=Decimal("0.9")))

    assert service.rates == {"USDT": Decimal(1), "USDC": Decimal(1)}


def test_sparkline_collects_ticks(service):
    for price in ("100", "200", "150"):
        service.process_tick(tick(price=price))

    assert service.sparkline_points("BTC") == [0.0, 1.0, 0.5]
    assert service.sparkline_points("ETH") == []
    assert service.sparkline_version == 3


def test_stale_needs_two_confirmations(service, clock):
    service.process_tick(tick())
    clock.advance(31)

    assert not service.check_staleness()
    assert service.prices["BTC"].status is PriceStatus.LIVE

    version = service.sparkline_version
    assert service.check_staleness()
    assert service.prices["BTC"].status is PriceStatus.STALE
    assert service.sparkline_version == version + 1

    assert not service.check_staleness()
    assert service.sparkline_version == version + 1


def test_fresh_tick_resets_stale_count(service, clock):
    service.process_tick(tick())
    clock.advance(31)
    assert not service.check_staleness()

    service.process_tick(tick())
    clock.advance(31)
    assert not service.check_staleness()
    assert service.prices["BTC"].status is PriceStatus.LIVE


def test_stale_price_recovers_on_tick(service, clock):
    service.process_tick(tick())
    clock.advance(31)
    service.check_staleness()
    service.check_staleness()

    assert service.process_tick(tick(price="65100")).status is PriceStatus.LIVE


def test_exhausted_primary_marks_prices_disconnected(service):
    service.process_tick(tick())
    service.process_tick(tick(base="ETH", price="3000"))
    service.primary = SimpleNamespace(is_reconnect_exhausted=True)
    version = service.sparkline_version

    assert service.check_staleness()
    assert {p.status for p in service.prices.values()} == {PriceStatus.DISCONNECTED}
    assert {p.price for p in service.prices.values()} == {Decimal(0)}
    assert service.sparkline_version == version + 1

    assert not service.check_staleness()
    assert service.sparkline_version == version + 1

    service.process_tick(tick())
    assert not service.disconnected
    assert service.prices["BTC"].status is PriceStatus.LIVE


def test_end_to_end(service, connector):
    async def scenario():
        await service.start([Token("btc"), Token("eth", is_visible=False)], AppSettings())
        fx_ws, primary_ws = connector.sockets

        fx_ws.push(json.dumps({"type": "ticker", "product_id": "USDT-USD", "price": "1.001"}))
        await settle()
        primary_ws.push(json.dumps({"stream": "btcusdt@miniTicker", "data": BTC_TICK}))
        await settle()

        prices = dict(service.prices)
        await service.stop()
        return prices

    prices = asyncio.run(scenario())

    assert list(prices) == ["BTC"]
    assert prices["BTC"].price == Decimal("65065.00")
    assert prices["BTC"].display_price == "$65,000.00"
    assert prices["BTC"].price_change_24h == Decimal("1.5625")
    assert prices["BTC"].status is PriceStatus.LIVE

    assert connector.urls == [
        "wss://ws-feed.exchange.coinbase.com",
        "wss://fstream.binance.com/stream?streams=btcusdt@miniTicker",
    ]
    assert json.loads(connector.sockets[0].sent[0])["type"] == "subscribe"
    assert all(ws.closed for ws in connector.sockets)


def test_start_subscribes_with_quote_mode(service, connector):
    async def scenario():
        await service.start([Token("sol")], AppSettings(quote_mode=QuoteMode.USDC))
        await service.stop()

    asyncio.run(scenario())
    assert connector.urls[-1].endswith("streams=solusdc@miniTicker")
    assert service.quote_mode is QuoteMode.USDC


def test_update_subscriptions(service, connector):
    async def scenario():
        await service.start([Token("btc")], AppSettings())
        await service.update_subscriptions([Token("btc"), Token("eth")], QuoteMode.USD_APPROX)
        await service.update_subscriptions([Token("btc"), Token("eth")], QuoteMode.USD_APPROX)
        await service.stop()

    asyncio.run(scenario())
    assert connector.urls[1:] == [
        "wss://fstream.binance.com/stream?streams=btcusdt@miniTicker",
        "wss://fstream.binance.com/stream?streams=btcusdt@miniTicker/ethusdt@miniTicker",
    ]
    assert set(service.sparklines) == {"BTC", "ETH"}


def test_primary_exhaustion_reaches_watchdog(service, connector):
    async def scenario():
        await service.start([Token("btc")], AppSettings())
        connector.sockets[1].push(json.dumps(BTC_TICK))
        await settle()

        connector.failures = 2
        connector.sockets[1].drop()
        await settle(50)

        exhausted = service.primary.is_reconnect_exhausted
        changed = service.check_staleness()
        await service.stop()
        return exhausted, changed

    exhausted, changed = asyncio.run(scenario())
    assert exhausted
    assert changed
    assert service.prices["BTC"].status is PriceStatus.DISCONNECTED


def test_failed_start_cleans_up(config, clock):
    connector = FakeConnector(failures=1)
    options = {"connector": connector, "settle_delay": 0, "base_delay": 0}
    service = PriceService(
        primary_factory=lambda: BinanceFutures(connection_options=options),
        fx_factory=lambda: Coinbase(connection_options=options),
        config=config,
        clock=clock,
    )

    with pytest.raises(ConnectionFailed):
        asyncio.run(service.start([Token("btc")], AppSettings()))

    assert service.fx is None
    assert service.primary is None
    assert not service.tasks


def test_prices_are_published_to_sink(connection_options, config, clock, connector):
    client = FakeRedis()
    service = PriceService(
        primary_factory=lambda: BinanceFutures(connection_options=connection_options),
        fx_factory=lambda: Coinbase(connection_options=connection_options),
        config=config,
        sink=RedisPriceSink(client),
        clock=clock,
    )

    async def scenario():
        await service.start([Token("btc")], AppSettings())
        connector.sockets[1].push(json.dumps(BTC_TICK))
        await settle()
        await service.stop()

    asyncio.run(scenario())
    assert ("sadd", "symbols", "BTC") in client.executed


def test_prices_view_is_read_only(service):
    service.process_tick(tick())

    with pytest.raises(TypeError):
        service.prices["BTC"] = None


def test_failed_symbol_switch_ends_disconnected(service, connector):
    async def scenario():
        await service.start([Token("btc")], AppSettings())
        connector.sockets[1].push(json.dumps(BTC_TICK))
        await settle()

        connector.failures = 10
        with pytest.raises(ConnectionFailed):
            await service.update_subscriptions([Token("btc"), Token("eth")], QuoteMode.USDT)
        await settle(50)

        exhausted = service.primary.is_reconnect_exhausted
        changed = service.check_staleness()
        await service.stop()
        return exhausted, changed

    exhausted, changed = asyncio.run(scenario())
    assert exhausted
    assert changed
    assert service.prices["BTC"].status is PriceStatus.DISCONNECTED
    assert "ETH" in service.sparklines
