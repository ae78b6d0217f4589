"""
Storefront Service — 台帳スキーマ

在庫テーブル（商品コードがキー）、追記のみの注文テーブル、
在庫変更の監査用イベントテーブルの 3 つ。
起動時に何度実行しても安全なように IF NOT EXISTS で作成する。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS inventory (
        code          VARCHAR(64) PRIMARY KEY,
        main_category VARCHAR(128) NOT NULL DEFAULT '',
        description   TEXT NOT NULL DEFAULT '',
        stock         INTEGER NOT NULL,
        unit_price    INTEGER NOT NULL,
        updated_at    VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id         VARCHAR(16) PRIMARY KEY,
        name             VARCHAR(200) NOT NULL,
        phone            VARCHAR(50) NOT NULL,
        email            VARCHAR(320) NOT NULL,
        address          TEXT NOT NULL,
        account_last5    VARCHAR(5) NOT NULL,
        facebook         VARCHAR(500) NOT NULL DEFAULT '',
        remark           TEXT NOT NULL DEFAULT '',
        summary_text     TEXT NOT NULL,
        total_amount     INTEGER NOT NULL,
        created_at_local VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_events (
        aggregate_id   VARCHAR(64) NOT NULL,
        aggregate_type VARCHAR(32) NOT NULL,
        event_type     VARCHAR(64) NOT NULL,
        event_data     TEXT NOT NULL,
        version        INTEGER NOT NULL,
        created_at     VARCHAR(40) NOT NULL,
        PRIMARY KEY (aggregate_id, version)
    )
    """,
]


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))
