"""
Storefront Service — 台帳コマンド (Write 側)

在庫の一括条件付き減算、補償としての戻し、注文の追記を行う。

一括減算は全か無か:
  1. 商品コードをソートした順に条件付き UPDATE を発行する
     (stock >= 数量 の行だけが更新される = コード単位で原子的な読み書き)
  2. どれか 1 行でも条件に合わなければトランザクション全体をロールバック
  3. 全行が更新できたときだけコミット

UPDATE が取った行ロックはコミットまで保持されるので、
同じコードを奪い合う並行コミットは DB 側で直列化される。
コード順を揃えているのはデッドロックを避けるため。
"""

from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store
from .errors import OrderIdCollision
from .events import InventoryDecremented, InventoryRestocked


async def decrement_if_sufficient(
    session: AsyncSession,
    items: dict[str, int],
    order_id: str | None = None,
) -> dict:
    """
    在庫一括減算コマンド

    order_id は InventoryDecremented に記録され、応答を受け取れなかった
    場合に減算が反映されたかどうかを後から確かめる手がかりになる。

    成功: {"success": True}
    不足: {"success": False, "code": ..., "available": ..., "found": bool}
    不足の場合はどの商品の在庫も変わらない。
    """
    now = datetime.now(timezone.utc)

    for code in sorted(items):
        quantity = items[code]
        if quantity <= 0:
            raise ValueError(f"quantity for {code} must be positive, got {quantity}")

        result = await session.execute(
            text("""
                UPDATE inventory
                SET stock = stock - :qty, updated_at = :now
                WHERE code = :code AND stock >= :qty
            """),
            {"qty": quantity, "now": now.isoformat(), "code": code},
        )
        if result.rowcount != 1:
            # 在庫不足 → ここまでの減算もすべて取り消す
            await session.rollback()
            row = (
                await session.execute(
                    text("SELECT stock FROM inventory WHERE code = :code"),
                    {"code": code},
                )
            ).fetchone()
            await session.rollback()
            return {
                "success": False,
                "code": code,
                "available": max(row.stock, 0) if row else 0,
                "found": row is not None,
            }

        stock_after = (
            await session.execute(
                text("SELECT stock FROM inventory WHERE code = :code"),
                {"code": code},
            )
        ).scalar_one()
        await event_store.append_event(
            session,
            code,
            "Inventory",
            "InventoryDecremented",
            InventoryDecremented(
                code=code,
                quantity=quantity,
                stock_after=stock_after,
                timestamp=now,
                order_id=order_id,
            ).model_dump(mode="json"),
        )

    await session.commit()
    return {"success": True}


async def restock(
    session: AsyncSession,
    items: dict[str, int],
    order_id: str | None = None,
) -> dict:
    """
    在庫戻しコマンド（補償トランザクション）

    減算に成功した後で注文の書き込みに失敗した場合にだけ使う。
    """
    now = datetime.now(timezone.utc)

    for code in sorted(items):
        quantity = items[code]
        await session.execute(
            text("""
                UPDATE inventory
                SET stock = stock + :qty, updated_at = :now
                WHERE code = :code
            """),
            {"qty": quantity, "now": now.isoformat(), "code": code},
        )
        stock_after = (
            await session.execute(
                text("SELECT stock FROM inventory WHERE code = :code"),
                {"code": code},
            )
        ).scalar_one()
        await event_store.append_event(
            session,
            code,
            "Inventory",
            "InventoryRestocked",
            InventoryRestocked(
                code=code,
                quantity=quantity,
                stock_after=stock_after,
                timestamp=now,
                order_id=order_id,
            ).model_dump(mode="json"),
        )

    await session.commit()
    return {"success": True}


async def append_order(session: AsyncSession, record: dict) -> str:
    """
    注文追記コマンド

    order_id の主キー制約に違反した場合は OrderIdCollision を送出する。
    呼び出し側で ID を振り直して再試行する。
    """
    try:
        await session.execute(
            text("""
                INSERT INTO orders
                    (order_id, name, phone, email, address, account_last5,
                     facebook, remark, summary_text, total_amount, created_at_local)
                VALUES
                    (:order_id, :name, :phone, :email, :address, :account_last5,
                     :facebook, :remark, :summary_text, :total_amount, :created_at_local)
            """),
            record,
        )
        await event_store.append_event(
            session, record["order_id"], "Order", "OrderPlaced", record, 0
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise OrderIdCollision(record["order_id"])

    return record["order_id"]
