"""
Notifier Service — FastAPI エントリーポイント

注文通知の配信だけを受け持つ。Command / Query エンドポイントは持たない。
Storefront が order_events に流した OrderPlaced をバックグラウンドで購読する。

┌──────────────┐   order_events   ┌──────────────────┐ ──▶ Discord Webhook
│  Storefront  │ ──── Redis ────▶ │ Notifier Service │
│  (注文確定)  │   Pub/Sub        │                  │ ──▶ 確認メール (SMTP)
└──────────────┘                  └──────────────────┘

配信の失敗はログに残すだけで、注文確定には影響しない。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .channels import SmtpConfig
from .subscriber import NotifierConfig, run_subscriber

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
DISCORD_WEBHOOK_URL = os.environ.get("DISCORD_WEBHOOK_URL")
SMTP_HOST = os.environ.get("SMTP_HOST")

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def load_config() -> NotifierConfig:
    smtp = None
    if SMTP_HOST:
        smtp = SmtpConfig(
            host=SMTP_HOST,
            port=int(os.environ.get("SMTP_PORT", "465")),
            user=os.environ["SMTP_USER"],
            password=os.environ["SMTP_PASSWORD"],
            sender=os.environ.get("MAIL_FROM", os.environ["SMTP_USER"]),
        )
    if not DISCORD_WEBHOOK_URL:
        logger.warning("DISCORD_WEBHOOK_URL is not set; Discord notifications disabled")
    if smtp is None:
        logger.warning("SMTP_HOST is not set; confirmation emails disabled")
    return NotifierConfig(discord_webhook_url=DISCORD_WEBHOOK_URL, smtp=smtp)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """起動時に Redis サブスクライバをバックグラウンドタスクとして開始する。"""
    shutdown_event = asyncio.Event()
    subscriber_task = asyncio.create_task(
        run_subscriber(REDIS_URL, load_config(), shutdown_event)
    )
    yield
    shutdown_event.set()
    subscriber_task.cancel()
    try:
        await subscriber_task
    except asyncio.CancelledError:
        pass


app = FastAPI(title="Notifier Service", lifespan=lifespan)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "notifier-service"}
