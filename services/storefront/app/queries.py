"""
Storefront Service — 台帳クエリ (Read 側)

在庫スナップショットと注文の照会。どちらも副作用なし。
スナップショットは呼び出した時点の値であり、それ以上の鮮度は保証しない。
"""

import json

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession


async def get_inventory(
    session: AsyncSession,
    codes: list[str] | None = None,
) -> dict[str, dict]:
    """在庫と単価を {code: {"stock", "unit_price"}} の形で返す。"""
    if codes is None:
        result = await session.execute(
            text("SELECT code, stock, unit_price FROM inventory ORDER BY code"),
        )
    else:
        if not codes:
            return {}
        result = await session.execute(
            text(
                "SELECT code, stock, unit_price FROM inventory WHERE code IN :codes ORDER BY code"
            ).bindparams(bindparam("codes", expanding=True)),
            {"codes": list(codes)},
        )
    return {
        row.code: {"stock": row.stock, "unit_price": row.unit_price}
        for row in result.fetchall()
    }


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM orders WHERE order_id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return {
        "order_id": row.order_id,
        "name": row.name,
        "phone": row.phone,
        "email": row.email,
        "address": row.address,
        "account_last5": row.account_last5,
        "facebook": row.facebook,
        "remark": row.remark,
        "summary_text": row.summary_text,
        "total_amount": row.total_amount,
        "created_at_local": row.created_at_local,
    }


async def decrement_recorded(
    session: AsyncSession,
    codes: list[str],
    order_id: str,
) -> bool:
    """order_id 付きの InventoryDecremented が監査ログに残っているか"""
    if not codes:
        return False
    result = await session.execute(
        text("""
            SELECT event_data FROM ledger_events
            WHERE event_type = 'InventoryDecremented' AND aggregate_id IN :codes
        """).bindparams(bindparam("codes", expanding=True)),
        {"codes": list(codes)},
    )
    return any(
        json.loads(row.event_data).get("order_id") == order_id
        for row in result.fetchall()
    )
