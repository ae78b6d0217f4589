"""
Storefront Service — 注文確定 (Order Committer)

照合済みのカートを「確定」= 在庫の減算 + 注文の追記 に変換する。
全ステップの順序は固定:

  ┌──────────────────────────────────────────────────────────┐
  │  1. トークンを消費（無効なら DuplicateSubmission）        │
  │  2. 在庫スナップショットを取り直す                        │
  │     (下書き作成時の値は数秒〜数分古いので信じない)        │
  │  3. 単価と合計を台帳の値で計算し直す                      │
  │  4. 全品目の在庫を検査（1 つでも不足なら何も減らさない）  │
  │  5. 台帳で一括条件付き減算                                │
  │     └─ 3〜4 の後に他の購入者に先を越された → 在庫不足     │
  │  6. 注文を追記（ID が衝突したら振り直す）                 │
  │     └─ 失敗 → 5 の減算を戻す（補償トランザクション）      │
  │  7. 通知を切り離したタスクで発行（失敗しても確定は有効）  │
  └──────────────────────────────────────────────────────────┘

5 の応答が時間切れになった場合は、先に生成した注文 ID が監査ログに
残っているかを確かめ、反映済みなら戻す。

1 のあとで 2〜6 が失敗した場合、下書きは復元しない。
購入者はカートから下書きを作り直す。
"""

import asyncio
import logging
import secrets
import string
from collections.abc import Mapping
from datetime import datetime
from typing import Literal
from zoneinfo import ZoneInfo

from . import cart as cart_module
from .cart import CartLine, StockAdjustment
from .errors import (
    DuplicateSubmission,
    InsufficientStock,
    LedgerUnavailable,
    OrderIdCollision,
    OrderNotFound,
    ProductNotFound,
)
from .events import OrderPlaced
from .ledger import Ledger
from .notifier import OrderNotifier
from .pricing import Quote, ensure_available, quote
from .token_guard import BuyerInfo, CommitmentDraft, CommitmentTokenGuard

logger = logging.getLogger(__name__)

ORDER_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
ORDER_ID_LENGTH = 5
MAX_ORDER_ID_ATTEMPTS = 5


def generate_order_id() -> str:
    return "".join(secrets.choice(ORDER_ID_ALPHABET) for _ in range(ORDER_ID_LENGTH))


class OrderCommitter:
    """カート照合・下書き発行・注文確定のオーケストレーター"""

    def __init__(
        self,
        ledger: Ledger,
        guard: CommitmentTokenGuard,
        notifier: OrderNotifier,
        shipping_fee: int = 65,
        timezone: str = "Asia/Taipei",
    ):
        self.ledger = ledger
        self.guard = guard
        self.notifier = notifier
        self.shipping_fee = shipping_fee
        self.timezone = ZoneInfo(timezone)
        self._notifications: set[asyncio.Task] = set()

    def _now(self) -> datetime:
        return datetime.now(self.timezone)

    # ── 照合 ─────────────────────────────────────────

    async def snapshot(self) -> dict[str, int]:
        """最新の在庫スナップショット {code: stock}"""
        inventory = await self.ledger.get_stock()
        return {code: entry["stock"] for code, entry in inventory.items()}

    async def reconcile_cart(
        self,
        cart: Mapping[str, CartLine],
    ) -> tuple[dict[str, CartLine], list[StockAdjustment]]:
        return cart_module.reconcile(cart, await self.snapshot())

    # ── 下書き ───────────────────────────────────────

    async def submit_draft(
        self,
        session_id: str,
        buyer: BuyerInfo,
        quantities: Mapping[str, object],
    ) -> CommitmentDraft:
        """
        購入者情報とカートの数量から下書きを作り、トークンを発行する。

        クライアントから受け取るのは商品コードと数量だけ。
        単価・合計はここで台帳から計算する。
        """
        items = cart_module.ordered_items(quantities)
        inventory = await self.ledger.get_stock(items)
        priced = quote(items, inventory, self.shipping_fee)

        draft = CommitmentDraft(
            buyer=buyer,
            ordered_items=items,
            summary_text=priced.summary_text,
            computed_total=priced.total_amount,
            created_at=self._now(),
        )
        issued = await self.guard.issue(session_id, draft)
        logger.info("Issued draft for session %s (%d items, total %d)", session_id, len(items), priced.total_amount)
        return issued

    # ── 確定 ─────────────────────────────────────────

    async def confirm_draft(
        self,
        session_id: str,
        token: str,
        action: Literal["confirm", "cancel"],
    ) -> OrderPlaced | None:
        """
        下書きを確定またはキャンセルする。

        確定なら追記した注文を返す。キャンセルなら None。
        どちらの場合もトークンは消費され、同じトークンは二度と使えない。
        """
        if action not in ("confirm", "cancel"):
            raise ValueError(f"unknown action: {action}")

        # Step 1: トークン消費
        draft = await self.guard.consume(session_id, token)
        if draft is None:
            logger.info("Rejected replayed or expired token for session %s", session_id)
            raise DuplicateSubmission()

        if action == "cancel":
            logger.info("Draft cancelled for session %s", session_id)
            return None

        items = draft.ordered_items

        # Step 2: 最新スナップショット
        inventory = await self.ledger.get_stock(items)

        # Step 3: 価格の再計算（サーバー側の合計が正）
        priced = quote(items, inventory, self.shipping_fee)
        if priced.total_amount != draft.computed_total:
            logger.info(
                "Total changed since draft for session %s: %d -> %d",
                session_id,
                draft.computed_total,
                priced.total_amount,
            )

        # Step 4: 減算前に全品目を検査
        ensure_available(items, inventory)

        # Step 5: 一括条件付き減算
        order_id = generate_order_id()
        try:
            result = await self.ledger.decrement_if_sufficient(items, order_id)
        except LedgerUnavailable:
            await self._recover_uncertain_decrement(items, order_id)
            raise
        if not result["success"]:
            if not result["found"]:
                raise ProductNotFound(result["code"])
            logger.info(
                "Lost stock race on %s for session %s (available %d)",
                result["code"],
                session_id,
                result["available"],
            )
            raise InsufficientStock(result["code"], result["available"])

        # Step 6: 注文追記
        try:
            record = await self._append_order(draft, priced, order_id)
        except LedgerUnavailable:
            await self._compensate(items, order_id)
            raise

        # Step 7: 通知（切り離し）
        self._dispatch_notification(record)
        return record

    async def _append_order(
        self, draft: CommitmentDraft, priced: Quote, order_id: str
    ) -> OrderPlaced:
        created_at = self._now().isoformat(timespec="seconds")
        for attempt in range(MAX_ORDER_ID_ATTEMPTS):
            record = OrderPlaced(
                order_id=order_id if attempt == 0 else generate_order_id(),
                **draft.buyer.model_dump(),
                summary_text=priced.summary_text,
                total_amount=priced.total_amount,
                created_at_local=created_at,
            )
            try:
                await self.ledger.append_order(record.model_dump())
            except OrderIdCollision as e:
                logger.warning("Order id %s already taken, generating another", e.order_id)
                continue
            logger.info("Order %s placed (total %d)", record.order_id, record.total_amount)
            return record
        raise LedgerUnavailable("could not allocate a unique order id")

    async def _recover_uncertain_decrement(self, items: dict[str, int], order_id: str) -> None:
        """
        減算の応答を受け取れなかった場合の後始末。

        COMMIT が届いた後に応答だけ遅れることがあるので、監査ログに
        この order_id の減算が残っていれば戻す。確かめられなければ
        CRITICAL を残して手作業での確認に回す。
        """
        try:
            landed = await self.ledger.decrement_recorded(items, order_id)
        except LedgerUnavailable:
            logger.critical(
                "Decrement for order %s has unknown outcome; stock for %s needs manual check",
                order_id,
                items,
            )
            return
        if landed:
            logger.warning("Decrement for order %s landed after timeout", order_id)
            await self._compensate(items, order_id)

    async def _compensate(self, items: dict[str, int], order_id: str) -> None:
        try:
            await self.ledger.restock(items, order_id)
            logger.warning("Restocked %s for order %s", items, order_id)
        except LedgerUnavailable:
            logger.critical(
                "Restock for order %s failed; stock for %s needs manual correction",
                order_id,
                items,
            )

    def _dispatch_notification(self, record: OrderPlaced) -> None:
        task = asyncio.create_task(self.notifier.notify(record))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def drain(self) -> None:
        """未完了の通知タスクを待つ（シャットダウン時）"""
        if self._notifications:
            await asyncio.gather(*self._notifications, return_exceptions=True)

    # ── 照会 ─────────────────────────────────────────

    async def query_order(self, order_id: str) -> OrderPlaced:
        row = await self.ledger.find_order(order_id)
        if row is None:
            raise OrderNotFound(order_id)
        return OrderPlaced(**row)
