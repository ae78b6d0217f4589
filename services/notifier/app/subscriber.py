"""
Notifier Service — Redis Pub/Sub サブスクライバー

order_events チャネルを購読し、OrderPlaced を受け取るたびに
Discord 通知と確認メールを送る。

注意: Redis Pub/Sub は fire-and-forget 方式。
サービスがダウンしている間の注文通知は失われる（注文自体は台帳に残る）。
"""

import asyncio
import json
import logging
from dataclasses import dataclass

import httpx
import redis.asyncio as aioredis

from . import channels
from .channels import SmtpConfig

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


@dataclass(frozen=True)
class NotifierConfig:
    discord_webhook_url: str | None = None
    smtp: SmtpConfig | None = None


async def handle_event(
    event: dict,
    client: httpx.AsyncClient,
    config: NotifierConfig,
) -> list[str]:
    """
    1 件のイベントを配信し、成功したチャネル名を返す。
    どのチャネルの失敗も他のチャネルや呼び出し元には波及させない。
    """
    if event.get("event_type") != "OrderPlaced":
        return []
    data = event.get("data", {})
    delivered = []

    if config.discord_webhook_url:
        try:
            await channels.post_discord(client, config.discord_webhook_url, data)
            delivered.append("discord")
        except httpx.HTTPError:
            logger.exception("Discord notification failed for order %s", data.get("order_id"))

    if config.smtp and data.get("email"):
        try:
            message = channels.build_confirmation_email(data, config.smtp.sender)
            await channels.send_email(config.smtp, message)
            delivered.append("email")
        except OSError:
            # smtplib.SMTPException も OSError の派生
            logger.exception("Confirmation email failed for order %s", data.get("order_id"))

    logger.info("Order %s notified via %s", data.get("order_id"), delivered or "nothing")
    return delivered


async def run_subscriber(
    redis_url: str,
    config: NotifierConfig,
    shutdown_event: asyncio.Event,
) -> None:
    """
    order_events チャネルを購読し、注文通知を配信する。
    shutdown_event がセットされるまで無限ループで待機する。
    """
    redis_conn = aioredis.from_url(redis_url, decode_responses=True)
    pubsub = redis_conn.pubsub()
    await pubsub.subscribe(ORDER_EVENTS_CHANNEL)
    logger.info("Subscribed to %s channel", ORDER_EVENTS_CHANNEL)

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            while not shutdown_event.is_set():
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message and message["type"] == "message":
                    try:
                        event = json.loads(message["data"])
                        await handle_event(event, client, config)
                    except Exception:
                        logger.exception("Failed to process event")
                else:
                    await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(ORDER_EVENTS_CHANNEL)
        await pubsub.aclose()
        await redis_conn.aclose()
