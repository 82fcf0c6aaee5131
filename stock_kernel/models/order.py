"""
Module: stock_kernel.models.order
Responsibility: ORM persistence for sales orders (manual and externally
    sourced) and their line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status is monotonic: open -> fulfilled, never reversed.
    - external_order_id is UNIQUE, so one external event maps to at most
      one order record.
    - Line items are editable only while the order is open (ORM listeners
      in db/immutability.py + PostgreSQL triggers).

Failure modes:
    - IntegrityError on duplicate external_order_id.
    - ImmutabilityViolationError when touching a fulfilled order.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UUIDString


class OrderStatus(str, Enum):
    """Lifecycle status of an order.

    Transitions are one-way: OPEN -> FULFILLED.
    """

    OPEN = "open"
    FULFILLED = "fulfilled"


class OrderSource(str, Enum):
    """Where the order came from."""

    MANUAL = "manual"
    EXTERNAL = "external"


class Order(TrackedBase):
    """
    Order header.

    Guarantees:
        - processed_at is set exactly when status becomes FULFILLED.
        - Fulfillment writes only status, processed_at and updated_at.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("external_order_id", name="uq_order_external_id"),
        Index("idx_order_status", "status"),
        Index("idx_order_number", "order_number"),
        Index("idx_order_created", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    source: Mapped[OrderSource] = mapped_column(
        String(20),
        nullable=False,
        default=OrderSource.MANUAL,
    )

    external_order_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.OPEN,
    )

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    lines: Mapped[list["OrderLineItem"]] = relationship(
        back_populates="order",
        order_by="OrderLineItem.line_number",
        cascade="all, delete-orphan",
    )

    @property
    def is_fulfilled(self) -> bool:
        return self.status == OrderStatus.FULFILLED

    def __repr__(self) -> str:
        return f"<Order {self.order_number} ({self.status})>"


class OrderLineItem(Base):
    """A requested quantity of one variant."""

    __tablename__ = "order_line_items"

    __table_args__ = (
        Index("idx_order_line_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Variant reference (no FK)
    variant_id: Mapped[UUID] = mapped_column(nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped[Order] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<OrderLineItem #{self.line_number} {self.variant_id} x{self.quantity}>"
