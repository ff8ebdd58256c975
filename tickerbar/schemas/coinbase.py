from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict


class SubscribeRequestSchema(BaseModel):
    type: Literal["subscribe", "unsubscribe"]
    product_ids: list[str]
    channels: list[str] = ["ticker"]


class TickerEventSchema(BaseModel):
    """
    example:
    {
        "type": "ticker",
        "sequence": 37475248783,
        "product_id": "USDT-USD",
        "price": "1.0002",
        "open_24h": "1.0001",
        "volume_24h": "123456789.12",
        "low_24h": "0.9998",
        "high_24h": "1.0004",
        "time": "2024-05-01T12:00:00.000000Z"
    }
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    product_id: str
    price: Decimal
    volume_24h: Decimal | None = None
    open_24h: Decimal | None = None
    low_24h: Decimal | None = None
    high_24h: Decimal | None = None
