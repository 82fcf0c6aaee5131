"""
OrderService -- create, edit and look up orders.

Responsibility:
    Maintains order headers and line items for manual and externally
    sourced orders.  Fulfillment itself is FulfillmentEngine.fulfill_order.

Architecture position:
    Kernel > Services.  Commits its own writes (commit on success, rollback
    on failure, exception re-raised).

Invariants enforced:
    - An order has at least one line, every quantity > 0, every variant
      exists.
    - Fulfilled orders are read-only (OrderNotEditableError here, plus the
      immutability listeners underneath).
    - external_order_id is unique, so get_by_external_id() returns at most
      one order.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import OrderLine
from stock_kernel.exceptions import (
    EmptyOrderError,
    InvalidQuantityError,
    OrderNotEditableError,
    OrderNotFoundError,
    ValidationError,
    VariantNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.catalog import ProductVariant
from stock_kernel.models.order import Order, OrderLineItem, OrderSource, OrderStatus

logger = get_logger("services.orders")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class OrderService:
    """
    Order header and line maintenance.

    Transaction boundary: each write method commits on success and rolls
    back on failure.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def create_order(
        self,
        order_number: str,
        lines: Sequence[OrderLine],
        name: str | None = None,
        reason: str | None = None,
        created_by: str | None = None,
        source: OrderSource = OrderSource.MANUAL,
        external_order_id: str | None = None,
    ) -> Order:
        """
        Create an open order.

        Raises:
            ValidationError: blank order number.
            EmptyOrderError: no lines.
            InvalidQuantityError: a quantity <= 0 or not finite.
            VariantNotFoundError: a line references an unknown variant.
        """
        try:
            order_number = self._validate(order_number, lines)
            now = self._clock.now()

            order = Order(
                order_number=order_number,
                name=_clean(name),
                reason=_clean(reason),
                created_by=_clean(created_by),
                source=OrderSource(source),
                external_order_id=_clean(external_order_id),
                status=OrderStatus.OPEN,
                created_at=now,
                updated_at=now,
            )
            order.lines = self._build_lines(lines)
            self._session.add(order)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "source": OrderSource(order.source).value,
                "line_count": len(order.lines),
            },
        )
        return order

    def update_order(
        self,
        order_id: UUID,
        order_number: str,
        lines: Sequence[OrderLine],
        name: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Replace header fields and lines of an open order.

        Raises:
            OrderNotFoundError: unknown order.
            OrderNotEditableError: the order is fulfilled.
        """
        try:
            order = self._session.execute(
                select(Order)
                .where(Order.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if order is None:
                raise OrderNotFoundError(str(order_id))
            if order.status != OrderStatus.OPEN:
                raise OrderNotEditableError(str(order.id), OrderStatus(order.status).value)

            order.order_number = self._validate(order_number, lines)
            order.name = _clean(name)
            order.reason = _clean(reason)
            order.updated_at = self._clock.now()
            order.lines = self._build_lines(lines)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "order_updated",
            extra={"order_id": str(order.id), "line_count": len(order.lines)},
        )
        return order

    def get_order(self, order_id: UUID) -> Order:
        order = self._session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def get_by_external_id(self, external_order_id: str) -> Order | None:
        return self._session.execute(
            select(Order).where(Order.external_order_id == external_order_id)
        ).scalar_one_or_none()

    def list_orders(self, status: OrderStatus | str | None = None) -> list[Order]:
        """Orders newest first, optionally filtered by status."""
        stmt = select(Order).order_by(Order.created_at.desc(), Order.order_number.desc())
        if status is not None:
            stmt = stmt.where(Order.status == OrderStatus(status))
        return list(self._session.execute(stmt).scalars())

    # -------------------------------------------------------------------------

    def _validate(self, order_number: str, lines: Sequence[OrderLine]) -> str:
        cleaned = _clean(order_number)
        if cleaned is None:
            raise ValidationError("Order number is required")
        if not lines:
            raise EmptyOrderError("order")

        for line in lines:
            if not line.quantity.is_finite():
                raise InvalidQuantityError(str(line.quantity), "must be a finite number")
            if line.quantity <= 0:
                raise InvalidQuantityError(str(line.quantity))

        variant_ids = {line.variant_id for line in lines}
        found = set(
            self._session.execute(
                select(ProductVariant.id).where(ProductVariant.id.in_(variant_ids))
            ).scalars()
        )
        for variant_id in variant_ids - found:
            raise VariantNotFoundError(variant_id=str(variant_id))

        return cleaned

    @staticmethod
    def _build_lines(lines: Sequence[OrderLine]) -> list[OrderLineItem]:
        return [
            OrderLineItem(
                line_number=index,
                variant_id=line.variant_id,
                quantity=line.quantity,
            )
            for index, line in enumerate(lines, start=1)
        ]
