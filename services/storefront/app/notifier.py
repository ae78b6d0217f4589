"""
Storefront Service — 注文通知の発行

確定した注文を Redis Pub/Sub の order_events チャネルに OrderPlaced として流す。
実際の Discord 通知・確認メールは Notifier Service が購読して送る。

Pub/Sub は fire-and-forget。発行に失敗しても注文確定は取り消さない
（ログに残すだけで、購入者には見せない）。
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .events import OrderPlaced

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderNotifier:
    def __init__(self, redis: aioredis.Redis, timeout: float = 5.0):
        self.redis = redis
        self.timeout = timeout

    async def notify(self, record: OrderPlaced) -> None:
        try:
            await asyncio.wait_for(
                self.redis.publish(
                    ORDER_EVENTS_CHANNEL,
                    json.dumps(
                        {"event_type": "OrderPlaced", "data": record.model_dump()},
                        default=str,
                    ),
                ),
                self.timeout,
            )
            logger.info("Published OrderPlaced for order %s", record.order_id)
        except (RedisError, OSError, asyncio.TimeoutError):
            logger.exception("Failed to publish notification for order %s", record.order_id)
