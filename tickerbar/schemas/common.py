from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class DataSource(str, Enum):
    BINANCE = "binance"
    COINBASE = "coinbase"
    BITSTAMP = "bitstamp"


class QuoteMode(str, Enum):
    USDT = "USDT"
    USDC = "USDC"
    USD_APPROX = "USD≈"

    @property
    def market_quote(self) -> str:
        """
        Quote currency the futures feed is subscribed with for this mode
        """
        if self is QuoteMode.USDC:
            return "USDC"
        return "USDT"


class PriceStatus(str, Enum):
    LIVE = "live"
    STALE = "stale"
    DISCONNECTED = "disconnected"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True, frozen=True)
class MarketPair:
    base: str
    quote: str
    source: DataSource

    def __post_init__(self):
        object.__setattr__(self, "base", self.base.upper())
        object.__setattr__(self, "quote", self.quote.upper())

    @property
    def symbol(self) -> str:
        return f"{self.base}{self.quote}"

    @property
    def display_symbol(self) -> str:
        return self.base

    def tradingview_symbol(self) -> str:
        return f"{self.source.value.upper()}:{self.base}{self.quote}"

    def exchange_url(self) -> str:
        match self.source:
            case DataSource.BINANCE:
                return f"https://www.binance.com/en/trade/{self.base}_{self.quote}"
            case DataSource.COINBASE:
                return f"https://www.coinbase.com/advanced-trade/spot/{self.base}-{self.quote}"
            case DataSource.BITSTAMP:
                return f"https://www.bitstamp.net/markets/{self.base.lower()}/{self.quote.lower()}/"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class PriceTick:
    pair: MarketPair
    price: Decimal
    timestamp: datetime = field(default_factory=utcnow)
    volume_24h: Decimal | None = None
    price_change_24h: Decimal | None = None


@dataclass(slots=True, frozen=True)
class AggregatedPrice:
    symbol: str
    price: Decimal
    display_price: str
    quote_mode: QuoteMode
    price_change_24h: Decimal | None
    last_update: datetime
    status: PriceStatus


@dataclass(slots=True, frozen=True)
class Token:
    symbol: str
    is_visible: bool = True
    sort_order: int = 0

    def __post_init__(self):
        object.__setattr__(self, "symbol", self.symbol.upper())


DEFAULT_TOKENS: tuple[Token, ...] = (
    Token("BTC", sort_order=0),
    Token("ETH", sort_order=1),
    Token("SOL", sort_order=2),
    Token("BNB", sort_order=3),
    Token("XMR", sort_order=4),
)


def visible_symbols(tokens) -> list[str]:
    """
    Symbols of the visible tokens, in display order
    """
    return [t.symbol for t in sorted(tokens, key=lambda t: t.sort_order) if t.is_visible]


def percent_change(price: Decimal, open_price: Decimal | None) -> Decimal | None:
    if open_price is None or open_price == 0:
        return None
    return (price - open_price) / open_price * 100
