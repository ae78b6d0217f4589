"""
Storefront Service — 金額計算

単価は必ず台帳から取り直す。クライアントが送ってきた単価や合計は使わない。
"""

from collections.abc import Mapping

from pydantic import BaseModel

from .errors import InsufficientStock, ProductNotFound


class QuoteLine(BaseModel):
    code: str
    quantity: int
    unit_price: int
    subtotal: int


class Quote(BaseModel):
    lines: list[QuoteLine]
    subtotal: int
    shipping_fee: int
    total_amount: int
    summary_text: str


def _orderable(code: str, inventory: Mapping[str, dict]) -> dict:
    entry = inventory.get(code)
    # stock = -1 は展示のみの商品
    if entry is None or entry["stock"] < 0:
        raise ProductNotFound(code)
    return entry


def quote(
    items: Mapping[str, int],
    inventory: Mapping[str, dict],
    shipping_fee: int,
) -> Quote:
    lines = []
    for code in sorted(items):
        unit_price = _orderable(code, inventory)["unit_price"]
        quantity = items[code]
        lines.append(
            QuoteLine(
                code=code,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=quantity * unit_price,
            )
        )

    subtotal = sum(line.subtotal for line in lines)
    summary = [
        f"{line.code}: {line.quantity} x {line.unit_price} = {line.subtotal}"
        for line in lines
    ]
    summary.append(f"Shipping: {shipping_fee}")
    return Quote(
        lines=lines,
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        total_amount=subtotal + shipping_fee,
        summary_text="\n".join(summary),
    )


def ensure_available(items: Mapping[str, int], inventory: Mapping[str, dict]) -> None:
    """全品目を検査してから判定する。足りない品目があれば最初の 1 つで止める。"""
    for code in sorted(items):
        stock = _orderable(code, inventory)["stock"]
        if items[code] > stock:
            raise InsufficientStock(code, max(stock, 0))
