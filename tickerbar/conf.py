from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from tickerbar.schemas.common import DataSource, QuoteMode


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TICKERBAR_", env_file=".env", extra="ignore"
    )

    BINANCE_FUTURES_WS_URL: str = "wss://fstream.binance.com"
    COINBASE_WS_URL: str = "wss://ws-feed.exchange.coinbase.com"
    BITSTAMP_WS_URL: str = "wss://ws.bitstamp.net"

    WS_SETTLE_DELAY: float = 1.0
    WS_OPEN_TIMEOUT: float = 10.0
    WS_PING_INTERVAL: float = 30.0
    WS_PING_TIMEOUT: float = 10.0

    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 60.0
    RECONNECT_MAX_ATTEMPTS: int = 10

    THROTTLE_INTERVAL: float = 0.1

    WATCHDOG_INTERVAL: float = 10.0
    STALE_THRESHOLD: float = 30.0
    STALE_CONFIRMATIONS: int = 2

    SPARKLINE_WINDOW: float = 60.0
    SPARKLINE_MAX_POINTS: int = 60

    MAX_CONNECTIONS: int = 3
    MAX_SUBSCRIPTIONS_PER_CONNECTION: int = 200

    TOKENS: list[str] = ["BTC", "ETH", "SOL", "BNB", "XMR"]
    QUOTE_MODE: QuoteMode = QuoteMode.USDT

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None
    SNAPSHOT_INTERVAL: float = 15.0

    REDIS_URL: str | None = None

    def connection_options(self) -> dict:
        return {
            "settle_delay": self.WS_SETTLE_DELAY,
            "open_timeout": self.WS_OPEN_TIMEOUT,
            "ping_interval": self.WS_PING_INTERVAL,
            "ping_timeout": self.WS_PING_TIMEOUT,
            "base_delay": self.RECONNECT_BASE_DELAY,
            "max_delay": self.RECONNECT_MAX_DELAY,
            "max_attempts": self.RECONNECT_MAX_ATTEMPTS,
        }


class AppSettings(BaseModel):
    """
    User display preferences handed to the price service on start
    """

    quote_mode: QuoteMode = QuoteMode.USDT
    data_source: DataSource = DataSource.BINANCE


def get_config():
    return Config()
