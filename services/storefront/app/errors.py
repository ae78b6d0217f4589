"""
Storefront Service — ドメインエラー

購入者に見せる失敗はすべてここで種類ごとに定義する。
「エラーが発生しました」のような汎用メッセージは使わない。
購入者が「数量を直す」「待って再試行する」「注文済みとして扱う」の
どれを選ぶべきか判断できるよう、種類ごとに固有のメッセージを持つ。
"""


class StorefrontError(Exception):
    """全ドメインエラーの基底クラス"""

    error = "storefront_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class EmptyCart(StorefrontError):
    error = "empty_cart"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Your cart is empty. Add at least one item with a quantity above 0.")


class InvalidQuantity(StorefrontError):
    error = "invalid_quantity"
    status_code = 400

    def __init__(self, code: str, value: object) -> None:
        super().__init__(f"Quantity for {code} must be a whole number of at least 1 (got {value!r}).")
        self.code = code
        self.value = value

    def to_dict(self) -> dict:
        return {**super().to_dict(), "code": self.code}


class ProductNotFound(StorefrontError):
    error = "product_not_found"
    status_code = 404

    def __init__(self, code: str) -> None:
        super().__init__(f"Product {code} is not available for ordering.")
        self.code = code

    def to_dict(self) -> dict:
        return {**super().to_dict(), "code": self.code}


class OrderNotFound(StorefrontError):
    error = "order_not_found"
    status_code = 404

    def __init__(self, order_id: str) -> None:
        super().__init__(f"No order with id {order_id} was found.")
        self.order_id = order_id


class DuplicateSubmission(StorefrontError):
    """トークンの再送、またはセッション切れ"""

    error = "duplicate_submission"
    status_code = 409

    def __init__(self) -> None:
        super().__init__(
            "This order form was already submitted or has expired. "
            "Check your order history before ordering again."
        )


class InsufficientStock(StorefrontError):
    error = "insufficient_stock"
    status_code = 409

    def __init__(self, code: str, available: int) -> None:
        super().__init__(
            f"Only {available} of {code} left. Adjust the quantity and submit a new order."
        )
        self.code = code
        self.available = available

    def to_dict(self) -> dict:
        return {**super().to_dict(), "code": self.code, "available": self.available}


class LedgerUnavailable(StorefrontError):
    """台帳への I/O 失敗（呼び出し側で再試行可能、内部では自動再試行しない）"""

    error = "ledger_unavailable"
    status_code = 503

    def __init__(self, detail: str = "") -> None:
        super().__init__(
            "The inventory ledger is temporarily unavailable. "
            "No order was placed; please wait a moment and start again."
        )
        self.detail = detail


class SessionStoreUnavailable(StorefrontError):
    error = "session_store_unavailable"
    status_code = 503

    def __init__(self, detail: str = "") -> None:
        super().__init__(
            "Your checkout session could not be reached. Please wait a moment and start again."
        )
        self.detail = detail


class OrderIdCollision(Exception):
    """生成した注文 ID が既存の注文と衝突した（内部でのみ扱う）"""

    def __init__(self, order_id: str) -> None:
        super().__init__(order_id)
        self.order_id = order_id
