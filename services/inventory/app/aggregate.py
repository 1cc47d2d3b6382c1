"""
Inventory Service: 在庫台帳とリザベーション (Ledger / Reservation / Movement)

InventoryLedger は商品ごとの「引当可能数」と「引当済数」を持つ。
  total_quantity = quantity_available + quantity_reserved

  reserve / release_reservation は total_quantity を保存する。
  confirm_reservation / add_stock / remove_stock / adjust_stock だけが
  total_quantity を変える。

StockReservation の状態遷移:
    RESERVED → CONFIRMED  (支払い成功、出荷済み)
    RESERVED → RELEASED   (支払い失敗 = 補償)
    RESERVED → EXPIRED    (期限切れ)

StockMovement は台帳変更ごとの不変な監査レコード。
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID, uuid4

from .errors import InsufficientStock, InvalidQuantity, InvalidState, OverRelease

DEFAULT_RESERVATION_MINUTES = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"
    CONFIRMED = "CONFIRMED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


class MovementType(str, Enum):
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    RESERVED = "RESERVED"
    RELEASED = "RELEASED"
    ADJUSTMENT = "ADJUSTMENT"
    DAMAGED = "DAMAGED"
    RETURNED = "RETURNED"


class InventoryLedger:
    """
    在庫台帳 (1 商品 1 行)

    すべての変更メソッドは検証を先に行い、失敗時は状態を一切変えない。
    変更の永続化と StockMovement の記録は呼び出し側 (commands / handlers) の責務。
    """

    def __init__(
        self,
        product_id: UUID,
        product_name: str = "",
        sku: str = "",
        quantity_available: int = 0,
        quantity_reserved: int = 0,
        reorder_level: int = 10,
        max_stock_level: int = 1000,
    ) -> None:
        if quantity_available < 0 or quantity_reserved < 0:
            raise InvalidQuantity("Initial quantity cannot be negative")
        if reorder_level < 0:
            raise InvalidQuantity("Reorder level cannot be negative")

        now = _utcnow()
        self.id: UUID = uuid4()
        self.product_id = product_id
        self.product_name = product_name
        self.sku = sku
        self.quantity_available = quantity_available
        self.quantity_reserved = quantity_reserved
        self.reorder_level = reorder_level
        self.max_stock_level = max_stock_level
        self.last_restocked: datetime = now
        self.created_at: datetime = now
        self.updated_at: datetime | None = None
        self._persisted_counts = (quantity_available, quantity_reserved)

    @property
    def total_quantity(self) -> int:
        return self.quantity_available + self.quantity_reserved

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_available <= self.reorder_level

    @property
    def persisted_counts(self) -> tuple[int, int]:
        """最後に DB と一致していた (quantity_available, quantity_reserved)"""
        return self._persisted_counts

    def mark_persisted(self) -> None:
        self._persisted_counts = (self.quantity_available, self.quantity_reserved)

    def can_reserve(self, quantity: int) -> bool:
        return quantity > 0 and self.quantity_available >= quantity

    # ── 引き当て系 ───────────────────────────────────

    def reserve(self, quantity: int) -> None:
        _require_positive(quantity)
        if not self.can_reserve(quantity):
            raise InsufficientStock(self.quantity_available, quantity)

        self.quantity_available -= quantity
        self.quantity_reserved += quantity
        self._touch()

    def release_reservation(self, quantity: int) -> None:
        _require_positive(quantity)
        if quantity > self.quantity_reserved:
            raise OverRelease(
                f"Cannot release {quantity} units. Only {self.quantity_reserved} reserved",
                requested=quantity,
                reserved=self.quantity_reserved,
            )

        self.quantity_reserved -= quantity
        self.quantity_available += quantity
        self._touch()

    def confirm_reservation(self, quantity: int) -> None:
        """引当済み数量を出荷済みとして台帳から外す。"""
        _require_positive(quantity)
        if quantity > self.quantity_reserved:
            raise OverRelease(
                f"Cannot confirm {quantity} units. Only {self.quantity_reserved} reserved",
                requested=quantity,
                reserved=self.quantity_reserved,
            )

        self.quantity_reserved -= quantity
        self._touch()

    # ── 入出庫・棚卸 ─────────────────────────────────

    def add_stock(self, quantity: int) -> None:
        _require_positive(quantity)
        self.quantity_available += quantity
        self.last_restocked = _utcnow()
        self._touch()

    def remove_stock(self, quantity: int) -> None:
        _require_positive(quantity)
        if quantity > self.quantity_available:
            raise InsufficientStock(self.quantity_available, quantity)

        self.quantity_available -= quantity
        self._touch()

    def adjust_stock(self, new_available: int) -> None:
        if new_available < 0:
            raise InvalidQuantity("Quantity cannot be negative", requested=new_available)

        self.quantity_available = new_available
        self._touch()

    def update_reorder_level(self, reorder_level: int) -> None:
        if reorder_level < 0:
            raise InvalidQuantity("Reorder level cannot be negative")

        self.reorder_level = reorder_level
        self._touch()

    def _touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity_available": self.quantity_available,
            "quantity_reserved": self.quantity_reserved,
            "total_quantity": self.total_quantity,
            "reorder_level": self.reorder_level,
            "max_stock_level": self.max_stock_level,
            "is_low_stock": self.is_low_stock,
            "last_restocked": self.last_restocked.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_row(cls, row) -> "InventoryLedger":
        ledger = cls.__new__(cls)
        ledger.id = UUID(str(row.id))
        ledger.product_id = UUID(str(row.product_id))
        ledger.product_name = row.product_name
        ledger.sku = row.sku
        ledger.quantity_available = row.quantity_available
        ledger.quantity_reserved = row.quantity_reserved
        ledger.reorder_level = row.reorder_level
        ledger.max_stock_level = row.max_stock_level
        ledger.last_restocked = row.last_restocked
        ledger.created_at = row.created_at
        ledger.updated_at = row.updated_at
        ledger.mark_persisted()
        return ledger


class StockReservation:
    """
    注文 × 商品ごとの引き当てレコード。

    quantity は作成後に変わらない。RESERVED からの遷移は一度だけ。
    """

    def __init__(
        self,
        product_id: UUID,
        order_id: UUID,
        quantity: int,
        expiration_minutes: int = DEFAULT_RESERVATION_MINUTES,
    ) -> None:
        _require_positive(quantity)

        now = _utcnow()
        self.id: UUID = uuid4()
        self.product_id = product_id
        self.order_id = order_id
        self._quantity = quantity
        self.status = ReservationStatus.RESERVED
        self.reserved_at: datetime = now
        self.expires_at: datetime = now + timedelta(minutes=expiration_minutes)
        self.confirmed_at: datetime | None = None
        self.released_at: datetime | None = None
        self.reason: str | None = None

    @property
    def quantity(self) -> int:
        return self._quantity

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        return self.status == ReservationStatus.RESERVED and now > self.expires_at

    def confirm(self) -> None:
        self._require_reserved("confirm")
        self.status = ReservationStatus.CONFIRMED
        self.confirmed_at = _utcnow()

    def release(self, reason: str) -> None:
        self._require_reserved("release")
        self.status = ReservationStatus.RELEASED
        self.released_at = _utcnow()
        self.reason = reason

    def mark_expired(self) -> None:
        self._require_reserved("expire")
        self.status = ReservationStatus.EXPIRED
        self.released_at = _utcnow()
        self.reason = "Reservation expired"

    def _require_reserved(self, action: str) -> None:
        if self.status != ReservationStatus.RESERVED:
            raise InvalidState(
                f"Cannot {action} reservation in {self.status.value} status",
                reservation_id=str(self.id),
                status=self.status.value,
            )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "order_id": str(self.order_id),
            "quantity": self.quantity,
            "status": self.status.value,
            "reserved_at": self.reserved_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "released_at": self.released_at.isoformat() if self.released_at else None,
            "reason": self.reason,
        }

    @classmethod
    def from_row(cls, row) -> "StockReservation":
        reservation = cls.__new__(cls)
        reservation.id = UUID(str(row.id))
        reservation.product_id = UUID(str(row.product_id))
        reservation.order_id = UUID(str(row.order_id))
        reservation._quantity = row.quantity
        reservation.status = ReservationStatus(row.status)
        reservation.reserved_at = row.reserved_at
        reservation.expires_at = row.expires_at
        reservation.confirmed_at = row.confirmed_at
        reservation.released_at = row.released_at
        reservation.reason = row.reason
        return reservation


class StockMovement:
    """台帳変更 1 回分の監査レコード (追記のみ)"""

    __slots__ = (
        "id",
        "product_id",
        "movement_type",
        "quantity",
        "quantity_before",
        "quantity_after",
        "reference",
        "notes",
        "created_at",
    )

    def __init__(
        self,
        product_id: UUID,
        movement_type: MovementType,
        quantity: int,
        quantity_before: int,
        quantity_after: int,
        reference: str | None = None,
        notes: str | None = None,
        created_at: datetime | None = None,
        id: UUID | None = None,
    ) -> None:
        object.__setattr__(self, "id", id or uuid4())
        object.__setattr__(self, "product_id", product_id)
        object.__setattr__(self, "movement_type", MovementType(movement_type))
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "quantity_before", quantity_before)
        object.__setattr__(self, "quantity_after", quantity_after)
        object.__setattr__(self, "reference", reference)
        object.__setattr__(self, "notes", notes)
        object.__setattr__(self, "created_at", created_at or _utcnow())

    def __setattr__(self, name, value):
        raise AttributeError("StockMovement is immutable")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "movement_type": self.movement_type.value,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reference": self.reference,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row) -> "StockMovement":
        return cls(
            product_id=UUID(str(row.product_id)),
            movement_type=MovementType(row.movement_type),
            quantity=row.quantity,
            quantity_before=row.quantity_before,
            quantity_after=row.quantity_after,
            reference=row.reference,
            notes=row.notes,
            created_at=row.created_at,
            id=UUID(str(row.id)),
        )


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise InvalidQuantity("Quantity must be positive", requested=quantity)
