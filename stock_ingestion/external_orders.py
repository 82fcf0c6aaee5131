"""
stock_ingestion.external_orders -- register and fulfil external orders.

An external order (for example a paid web-shop order) arrives as an
ExternalOrder.  Intake:

    1. maps every line SKU to a ProductVariant (any unmapped SKU rejects
       the whole order and records nothing),
    2. registers exactly one Order(source=external) per external order id,
    3. fulfils it through FulfillmentEngine.fulfill_order.

Redelivery of the same event resolves to the same Order through the
UNIQUE external_order_id column, so it yields ALREADY_FULFILLED and
deducts nothing a second time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import OrderLine, to_decimal
from stock_kernel.domain.policy import FulfillmentPolicy
from stock_kernel.exceptions import StorageError, UnmappedSkuError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.catalog import ProductVariant
from stock_kernel.models.order import Order, OrderSource
from stock_kernel.services.fulfillment_service import (
    FulfillmentEngine,
    FulfillmentResult,
    FulfillmentStatus,
)
from stock_kernel.services.order_service import OrderService

logger = get_logger("ingestion.external_orders")

OPERATION = "external_order"


@dataclass(frozen=True)
class ExternalOrderLine:
    sku: str
    quantity: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "sku", self.sku.strip())
        object.__setattr__(self, "quantity", to_decimal(self.quantity))


@dataclass(frozen=True)
class ExternalOrder:
    """An authenticated order event from an external sales channel."""

    external_order_id: str
    order_number: str
    lines: tuple[ExternalOrderLine, ...] = field(default=())
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))


class ExternalOrderIntake:
    """
    Registers external orders and fulfils them.

    receive() always returns a FulfillmentResult; typed failures are never
    raised, matching the FulfillmentEngine contract.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: FulfillmentPolicy | None = None,
        created_by: str = "external",
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._orders = OrderService(session, self._clock)
        self._engine = FulfillmentEngine(session, self._clock, policy)
        self._created_by = created_by

    def receive(self, order: ExternalOrder) -> FulfillmentResult:
        with LogContext.bind(operation=OPERATION, actor_id=self._created_by):
            logger.info(
                "external_order_received",
                extra={
                    "external_order_id": order.external_order_id,
                    "line_count": len(order.lines),
                },
            )

            try:
                registered = self._register(order)
            except ValidationError as exc:
                logger.warning(
                    "external_order_rejected",
                    extra={
                        "external_order_id": order.external_order_id,
                        "error_code": exc.code,
                    },
                )
                return FulfillmentResult.failure(
                    FulfillmentStatus.VALIDATION_FAILED, OPERATION, exc,
                )
            except (StorageError, SQLAlchemyError) as exc:
                self._session.rollback()
                if not isinstance(exc, StorageError):
                    exc = StorageError("register_external_order", str(exc))
                logger.error(
                    "external_order_rejected",
                    extra={
                        "external_order_id": order.external_order_id,
                        "error_code": exc.code,
                    },
                )
                return FulfillmentResult.failure(
                    FulfillmentStatus.STORAGE_FAILED, OPERATION, exc,
                )

        return self._engine.fulfill_order(registered.id, created_by=self._created_by)

    # -------------------------------------------------------------------------

    def _register(self, order: ExternalOrder) -> Order:
        existing = self._orders.get_by_external_id(order.external_order_id)
        if existing is not None:
            logger.info(
                "external_order_redelivered",
                extra={
                    "external_order_id": order.external_order_id,
                    "order_id": str(existing.id),
                },
            )
            return existing

        lines = self._map_lines(order)
        try:
            return self._orders.create_order(
                order.order_number,
                lines,
                name=order.name,
                created_by=self._created_by,
                source=OrderSource.EXTERNAL,
                external_order_id=order.external_order_id,
            )
        except IntegrityError as exc:
            # A concurrent delivery registered the same external id first.
            existing = self._orders.get_by_external_id(order.external_order_id)
            if existing is None:
                raise StorageError("register_external_order", str(exc)) from exc
            return existing

    def _map_lines(self, order: ExternalOrder) -> list[OrderLine]:
        skus = {line.sku for line in order.lines}
        variant_by_sku: dict[str, UUID] = {}
        if skus:
            variant_by_sku = dict(
                self._session.execute(
                    select(ProductVariant.sku, ProductVariant.id).where(
                        ProductVariant.sku.in_(skus)
                    )
                ).all()
            )

        unmapped = sorted(skus - set(variant_by_sku))
        if unmapped:
            raise UnmappedSkuError(order.external_order_id, unmapped)

        return [
            OrderLine(variant_id=variant_by_sku[line.sku], quantity=line.quantity)
            for line in order.lines
        ]
