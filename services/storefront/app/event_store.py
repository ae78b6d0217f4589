"""
Storefront Service — 台帳イベントストア

在庫の増減と注文の追記をすべてイベントとして残す監査ログ。
在庫テーブル自体は現在値だけを持つので、
「いつ・どの注文で・いくつ減ったか」はここから辿る。

(aggregate_id, version) が主キーなので、同じ集約に
同じバージョンを二重に書こうとすると失敗する（楽観的排他制御）。
"""

import json
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


async def current_version(session: AsyncSession, aggregate_id: str) -> int:
    result = await session.execute(
        text("SELECT COALESCE(MAX(version), 0) AS version FROM ledger_events WHERE aggregate_id = :agg_id"),
        {"agg_id": aggregate_id},
    )
    return result.scalar_one()


async def append_event(
    session: AsyncSession,
    aggregate_id: str,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int | None = None,
) -> int:
    """
    イベントを追記して新しいバージョンを返す。

    expected_version を省略した場合は現在の最新バージョンに続けて書く。
    コミットは呼び出し側のトランザクションに任せる。
    """
    if expected_version is None:
        expected_version = await current_version(session, aggregate_id)
    new_version = expected_version + 1
    await session.execute(
        text("""
            INSERT INTO ledger_events
                (aggregate_id, aggregate_type, event_type, event_data, version, created_at)
            VALUES
                (:agg_id, :agg_type, :evt_type, :evt_data, :version, :now)
        """),
        {
            "agg_id": aggregate_id,
            "agg_type": aggregate_type,
            "evt_type": event_type,
            "evt_data": json.dumps(event_data, default=str),
            "version": new_version,
            "now": datetime.now(timezone.utc).isoformat(),
        },
    )
    return new_version


async def load_events(
    session: AsyncSession,
    aggregate_id: str,
) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT aggregate_type, event_type, event_data, version, created_at
            FROM ledger_events
            WHERE aggregate_id = :agg_id
            ORDER BY version ASC
        """),
        {"agg_id": aggregate_id},
    )
    return [
        {
            "aggregate_type": row.aggregate_type,
            "event_type": row.event_type,
            "event_data": json.loads(row.event_data),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]
