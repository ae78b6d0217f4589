"""
Notifier Service — 通知チャネル

OrderPlaced を人が読める文面にして、店主向けに Discord Webhook、
購入者向けに確認メールを送る。チャネルは互いに独立して失敗する。
"""

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

import httpx


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    sender: str


def format_order_message(data: dict) -> str:
    """店主向けの新規注文通知"""
    return "\n".join(
        [
            "**New order received!**",
            f"Order ID: {data['order_id']}",
            f"Name: {data['name']}",
            f"Phone: {data['phone']}",
            f"Email: {data['email']}",
            f"Address: {data['address']}",
            f"Account last 5: {data['account_last5']}",
            f"Facebook: {data.get('facebook') or ''}",
            f"Remark: {data.get('remark') or ''}",
            f"Items:\n{data['summary_text']}",
            f"Total: {data['total_amount']}",
            f"Ordered at: {data['created_at_local']}",
        ]
    )


async def post_discord(client: httpx.AsyncClient, webhook_url: str, data: dict) -> None:
    resp = await client.post(webhook_url, json={"content": format_order_message(data)})
    resp.raise_for_status()


def build_confirmation_email(data: dict, sender: str) -> EmailMessage:
    """購入者向けの確認メール。注文 ID は照会に使うので本文の先頭に置く。"""
    message = EmailMessage()
    message["From"] = sender
    message["To"] = data["email"]
    message["Subject"] = f"Order confirmation {data['order_id']}"
    message.set_content(
        f"Hello {data['name']},\n\n"
        f"Your order has been placed. Order ID: {data['order_id']}\n"
        "Please keep this order ID to look up your order.\n\n"
        f"{data['summary_text']}\n"
        f"Total: {data['total_amount']}\n\n"
        "Payment is by bank transfer; we will confirm it once received.\n"
    )
    return message


def _send_sync(config: SmtpConfig, message: EmailMessage) -> None:
    with smtplib.SMTP_SSL(config.host, config.port, timeout=30) as smtp:
        smtp.login(config.user, config.password)
        smtp.send_message(message)


async def send_email(config: SmtpConfig, message: EmailMessage) -> None:
    await asyncio.to_thread(_send_sync, config, message)
