"""
Storefront Service — イベント定義

台帳で発生した事実(イベント)。監査ログ(ledger_events)に記録され、
OrderPlaced は order_events チャネルにも発行されて通知サービスに届く。
"""

from datetime import datetime

from pydantic import BaseModel


class InventoryDecremented(BaseModel):
    """注文確定により在庫が減った"""
    code: str
    quantity: int
    stock_after: int
    timestamp: datetime
    order_id: str | None = None


class InventoryRestocked(BaseModel):
    """注文の書き込みに失敗したため在庫を戻した（補償トランザクション）"""
    code: str
    quantity: int
    stock_after: int
    timestamp: datetime
    order_id: str | None = None


class OrderPlaced(BaseModel):
    """注文が台帳に追記された"""
    order_id: str
    name: str
    phone: str
    email: str
    address: str
    account_last5: str
    facebook: str
    remark: str
    summary_text: str
    total_amount: int
    created_at_local: str
