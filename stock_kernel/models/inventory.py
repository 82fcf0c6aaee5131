"""
Module: stock_kernel.models.inventory
Responsibility: ORM persistence for the stock ledger -- immutable inventory
    movements and the materialized per-variant balance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - InventoryMovement rows are append-only (ORM listeners in
      db/immutability.py + PostgreSQL triggers).
    - InventoryBalance.variant_id is unique: one balance row per variant.
    - balance.quantity_on_hand == sum(movement.quantity) for the variant.
      Maintained by LedgerService, checked by
      InventorySelector.verify_ledger_consistency().

Failure modes:
    - IntegrityError on a second balance row for the same variant (the
      ledger treats this as a lost creation race and retries).
    - ImmutabilityViolationError on UPDATE/DELETE of a movement.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class MovementAction(str, Enum):
    """Business event that caused a movement.

    PURCHASE, OUTPUT are positive; CONSUMPTION, SALE are negative;
    ADJUSTMENT carries either sign.
    """

    PURCHASE = "PURCHASE"
    OUTPUT = "OUTPUT"
    CONSUMPTION = "CONSUMPTION"
    ADJUSTMENT = "ADJUSTMENT"
    SALE = "SALE"


class InventoryMovement(Base):
    """
    An immutable, signed stock change for one variant.

    Guarantees:
        - quantity != 0.
        - Never updated or deleted after insert.
        - order_id is set for SALE movements written by order fulfillment.
    """

    __tablename__ = "inventory_movements"

    __table_args__ = (
        Index("idx_inv_movement_variant", "variant_id"),
        Index("idx_inv_movement_action", "action"),
        Index("idx_inv_movement_created", "created_at"),
        Index("idx_inv_movement_order", "order_id"),
    )

    # Variant reference (no FK)
    variant_id: Mapped[UUID] = mapped_column(nullable=False)

    # Denormalized for history reads
    product_id: Mapped[UUID | None] = mapped_column(nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    action: Mapped[MovementAction] = mapped_column(String(20), nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement {self.action} {self.quantity} "
            f"variant={self.variant_id}>"
        )


class InventoryBalance(Base):
    """
    Materialized quantity on hand for one variant.

    Created lazily by the first movement for the variant and never deleted.
    May be negative: an oversold variant is a valid, visible state.
    """

    __tablename__ = "inventory_balances"

    __table_args__ = (
        UniqueConstraint("variant_id", name="uq_inventory_balance_variant"),
    )

    variant_id: Mapped[UUID] = mapped_column(nullable=False)

    quantity_on_hand: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<InventoryBalance variant={self.variant_id} qty={self.quantity_on_hand}>"
