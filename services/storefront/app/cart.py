"""
Storefront Service — カート照合 (Cart Reconciler)

カートはクライアントが保持する「仮押さえ」で、台帳の在庫とは
いつでもずれうる。照合はそのずれを毎回最新のスナップショットで
直す処理で、ずれ自体を防ごうとはしない。

各行の扱い:
  - スナップショットにないコード   → そのまま（最後に分かった状態を信じる）
  - 在庫 0 以下                    → 数量 0 の売り切れマーカーにする（終端）
  - 数量 > 在庫                    → 在庫まで減らし adjusted を立てる
  - 数量 <= 在庫                   → 元の希望数量がまだ在庫を超えていれば
                                     adjusted を維持、そうでなければ解除

照合は行を削除しない。削除は購入者の明示的な操作だけで行う。
同じスナップショットで二度照合しても結果は変わらない（冪等）。
"""

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field

from .errors import EmptyCart, InvalidQuantity


class CartLine(BaseModel):
    """カートの 1 行。unit_price と stock は追加した時点の表示用の値。"""
    quantity: int = Field(ge=0)
    unit_price: int = 0
    stock: int = 0
    adjusted: bool = False
    original_quantity: int | None = None
    out_of_stock: bool = False


class StockAdjustment(BaseModel):
    """照合中に購入者へ知らせるべき出来事"""
    code: str
    stock: int
    kind: Literal["adjusted", "sold_out"]


def reconcile_line(
    code: str,
    line: CartLine,
    stock: int | None,
) -> tuple[CartLine, StockAdjustment | None]:
    if stock is None or line.quantity == 0:
        return line, None

    if stock <= 0:
        sold_out = line.model_copy(
            update={
                "quantity": 0,
                "out_of_stock": True,
                "adjusted": False,
                "original_quantity": None,
            }
        )
        return sold_out, StockAdjustment(code=code, stock=0, kind="sold_out")

    if line.quantity > stock:
        original = line.original_quantity if line.original_quantity is not None else line.quantity
        clamped = line.model_copy(
            update={
                "quantity": stock,
                "original_quantity": original,
                "adjusted": True,
                "out_of_stock": False,
            }
        )
        return clamped, StockAdjustment(code=code, stock=stock, kind="adjusted")

    if line.original_quantity is not None and line.original_quantity > stock:
        # 在庫がまだ希望数量まで戻っていない
        return line.model_copy(update={"adjusted": True, "out_of_stock": False}), None

    return (
        line.model_copy(
            update={"adjusted": False, "original_quantity": None, "out_of_stock": False}
        ),
        None,
    )


def reconcile(
    cart: Mapping[str, CartLine],
    snapshot: Mapping[str, int],
) -> tuple[dict[str, CartLine], list[StockAdjustment]]:
    """カートをスナップショットに合わせ、(照合後カート, イベント一覧) を返す。"""
    reconciled: dict[str, CartLine] = {}
    adjustments: list[StockAdjustment] = []
    for code in sorted(cart):
        line, adjustment = reconcile_line(code, cart[code], snapshot.get(code))
        reconciled[code] = line
        if adjustment is not None:
            adjustments.append(adjustment)
    return reconciled, adjustments


def parse_quantity(code: str, value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        quantity = value
    elif isinstance(value, str) and value.strip().isdecimal():
        quantity = int(value.strip())
    else:
        raise InvalidQuantity(code, value)

    if quantity < 0:
        raise InvalidQuantity(code, value)
    return quantity


def ordered_items(quantities: Mapping[str, object]) -> dict[str, int]:
    """
    送信された数量から注文対象 {code: qty} を作る。

    数量 0 の行（売り切れマーカー）は黙って除外する。
    負数や数値でない値は InvalidQuantity、何も残らなければ EmptyCart。
    """
    items = {}
    for code, value in quantities.items():
        quantity = parse_quantity(code, value)
        if quantity > 0:
            items[code] = quantity
    if not items:
        raise EmptyCart()
    return items
