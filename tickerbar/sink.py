from typing import Iterable

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from tickerbar.schemas.common import AggregatedPrice

SYMBOLS_KEY = "symbols"


def get_redis(url: str):
    return redis.from_url(url, decode_responses=True)


class RedisPriceSink:
    """
    Mirrors the aggregated price table into redis hashes 'price:<SYMBOL>'
    for readers outside this process.
    """

    def __init__(self, client):
        self.redis = client

    @staticmethod
    def to_mapping(price: AggregatedPrice) -> dict[str, str]:
        return {
            "symbol": price.symbol,
            "price": str(price.price),
            "display_price": price.display_price,
            "quote_mode": price.quote_mode.value,
            "price_change_24h": "" if price.price_change_24h is None else str(price.price_change_24h),
            "status": price.status.value,
            "updated_at": price.last_update.isoformat(),
        }

    async def publish(self, prices: Iterable[AggregatedPrice]):
        prices = list(prices)
        if not prices:
            return

        try:
            async with self.redis.pipeline() as p:
                for price in prices:
                    p.hset(f"price:{price.symbol}", mapping=self.to_mapping(price))
                    p.sadd(SYMBOLS_KEY, price.symbol)
                await p.execute()
        except RedisError as e:
            logger.warning(f"failed to publish {len(prices)} prices to redis: {e!r}")

    async def close(self):
        await self.redis.aclose()
