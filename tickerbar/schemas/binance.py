from decimal import Decimal

from pydantic import ConfigDict, BaseModel, Field


class MiniTickerEventSchema(BaseModel):
    """
    example (futures, prices are sent as strings):
    {
        "e": "24hrMiniTicker",
        "E": 1700000000000,
        "s": "BTCUSDT",
        "c": "65000.00",
        "o": "64000.00",
        "h": "65500.00",
        "l": "63800.00",
        "v": "10000",
        "q": "650000000"
    }
    """

    model_config = ConfigDict(extra="ignore")

    symbol: str = Field(alias="s")

    event_type: str | None = Field(None, alias="e")
    event_time: int | None = Field(None, alias="E")
    close_price: Decimal = Field(alias="c")
    open_price: Decimal = Field(alias="o")
    high_price: Decimal | None = Field(None, alias="h")
    low_price: Decimal | None = Field(None, alias="l")
    total_traded_base_asset_volume: Decimal | None = Field(None, alias="v")
    total_traded_quote_asset_volume: Decimal | None = Field(None, alias="q")


class MiniTickerUpdateSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stream: str
    data: MiniTickerEventSchema
