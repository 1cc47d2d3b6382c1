"""
Inventory Service: エラー定義

ドメイン層は InventoryError のサブクラスを送出する。
Saga ハンドラはこれを捕捉し、ErrorKind を持つ結果オブジェクトに変換して返す。
呼び出し側は例外ではなく result.error で分岐する。
"""

from enum import Enum


class ErrorKind(str, Enum):
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    LOCK_UNAVAILABLE = "LOCK_UNAVAILABLE"
    INVALID_STATE = "INVALID_STATE"
    OVER_RELEASE = "OVER_RELEASE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INCONSISTENT_STATE = "INCONSISTENT_STATE"
    UNEXPECTED = "UNEXPECTED"


class InventoryError(Exception):
    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class InsufficientStock(InventoryError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock. Available: {available}, Requested: {requested}",
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class InvalidQuantity(InventoryError):
    kind = ErrorKind.INVALID_QUANTITY


class OverRelease(InventoryError):
    kind = ErrorKind.OVER_RELEASE


class InvalidState(InventoryError):
    kind = ErrorKind.INVALID_STATE


class ProductNotFound(InventoryError):
    kind = ErrorKind.PRODUCT_NOT_FOUND

    def __init__(self, product_id) -> None:
        super().__init__(
            f"Product {product_id} not found in inventory", product_id=str(product_id)
        )


class ReservationNotFound(InventoryError):
    kind = ErrorKind.RESERVATION_NOT_FOUND

    def __init__(self, order_id) -> None:
        super().__init__(
            f"No reservation found for order {order_id}", order_id=str(order_id)
        )


class LockUnavailable(InventoryError):
    kind = ErrorKind.LOCK_UNAVAILABLE

    def __init__(self, key: str) -> None:
        super().__init__(f"Failed to acquire lock for {key}", key=key)
        self.key = key


class ConcurrentModification(InventoryError):
    """読み込み後に別の書き込みで台帳が変わっていた（リースの重なりなど）"""
    kind = ErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, product_id) -> None:
        super().__init__(
            f"Inventory ledger for product {product_id} was modified concurrently",
            product_id=str(product_id),
        )
