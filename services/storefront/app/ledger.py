"""
Storefront Service — 台帳アクセサ

commands / queries をセッションファクトリ越しに呼び出す窓口。
注文確定の途中で外部ストアが遅くなってもトークン消費済みのまま
止まり続けないよう、すべての呼び出しに上限時間を設ける。

インフラ側の失敗（DB エラー・接続断・タイムアウト）は
LedgerUnavailable に変換する。内部での自動再試行はしない。
"""

import asyncio
import logging
from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import commands, event_store, queries
from .errors import LedgerUnavailable

logger = logging.getLogger(__name__)


class Ledger:
    """在庫台帳と注文ログ"""

    def __init__(self, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, operation: str, func, *args):
        async def call():
            async with self.session_factory() as session:
                return await func(session, *args)

        try:
            return await asyncio.wait_for(call(), self.timeout)
        except asyncio.TimeoutError:
            logger.error("Ledger %s timed out after %.1fs", operation, self.timeout)
            raise LedgerUnavailable(f"{operation} timed out")
        except (SQLAlchemyError, OSError) as e:
            logger.error("Ledger %s failed: %s", operation, e)
            raise LedgerUnavailable(f"{operation} failed: {e}") from e

    # ── Read 側 ─────────────────────────────────────

    async def get_stock(self, codes: Iterable[str] | None = None) -> dict[str, dict]:
        """{code: {"stock", "unit_price"}} を返す。codes 省略時は全商品。"""
        return await self._run(
            "get_stock",
            queries.get_inventory,
            sorted(codes) if codes is not None else None,
        )

    async def find_order(self, order_id: str) -> dict | None:
        return await self._run("find_order", queries.get_order, order_id)

    async def load_events(self, aggregate_id: str) -> list[dict]:
        return await self._run("load_events", event_store.load_events, aggregate_id)

    async def decrement_recorded(self, items: dict[str, int], order_id: str) -> bool:
        return await self._run(
            "decrement_recorded", queries.decrement_recorded, sorted(items), order_id
        )

    # ── Write 側 ────────────────────────────────────

    async def decrement_if_sufficient(
        self, items: dict[str, int], order_id: str | None = None
    ) -> dict:
        return await self._run(
            "decrement", commands.decrement_if_sufficient, dict(items), order_id
        )

    async def restock(self, items: dict[str, int], order_id: str | None = None) -> dict:
        return await self._run("restock", commands.restock, dict(items), order_id)

    async def append_order(self, record: dict) -> str:
        return await self._run("append_order", commands.append_order, record)
