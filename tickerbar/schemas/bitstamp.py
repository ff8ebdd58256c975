from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict


class ChannelSchema(BaseModel):
    channel: str


class SubscribeRequestSchema(BaseModel):
    event: Literal["bts:subscribe", "bts:unsubscribe"]
    data: ChannelSchema


class TradeSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Decimal
    amount: Decimal
    timestamp: Decimal


class TradeEventSchema(BaseModel):
    """
    example:
    {
        "event": "trade",
        "channel": "live_trades_btcusd",
        "data": {
            "id": 327042150,
            "timestamp": "1714560000",
            "amount": 0.0123,
            "price": 64999.5,
            "type": 0
        }
    }
    """

    model_config = ConfigDict(extra="ignore")

    event: str
    channel: str
    data: TradeSchema | None = None
