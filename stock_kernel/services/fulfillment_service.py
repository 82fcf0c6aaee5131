"""
FulfillmentEngine -- atomic multi-line stock operations.

Responsibility:
    One public operation per business event -- purchase, manufacturing
    output, adjustment, order fulfillment -- all with the same shape:

        validate -> aggregate / expand BOM -> ledger movements
                 -> order status (orders only) -> commit

Architecture position:
    Kernel > Services.  Owns the transaction boundary of each operation:
    commit on success, rollback on any failure.  Writes movements only
    through LedgerService and writes only status/timestamps on orders.

Invariants enforced:
    - All-or-nothing: a failure anywhere leaves no movement, no balance
      change and the order still open.
    - One movement per variant and action per operation (Aggregator).
    - Order fulfillment is guarded twice inside the same transaction:
      ``SELECT ... FOR UPDATE`` on the order row, then a conditional
      ``UPDATE ... WHERE status = 'open'``.  Two concurrent attempts cannot
      both deduct.
    - Every typed failure is returned as a FulfillmentResult, never raised.

Failure modes (FulfillmentStatus):
    - VALIDATION_FAILED: empty request, bad quantity, unknown product or
      variant, wrong category, ambiguous variant, insufficient stock under a
      strict policy, unknown order.
    - DATA_INTEGRITY_FAILED: a BOM row points at a missing component.
    - ALREADY_FULFILLED: the order was fulfilled before (no-op conflict).
    - STORAGE_FAILED: database error; nothing was committed, retry is safe.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_kernel.domain.aggregation import aggregate
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentLine,
    MovementRecord,
    OutputLine,
    PurchaseLine,
    StockWarning,
)
from stock_kernel.domain.policy import FulfillmentPolicy
from stock_kernel.exceptions import (
    AlreadyFulfilledError,
    AmbiguousVariantError,
    DataIntegrityError,
    EmptyOrderError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidQuantityError,
    OrderNotFoundError,
    ProductNotFoundError,
    StorageError,
    ValidationError,
    VariantNotFoundError,
    VariantProductMismatchError,
    WrongCategoryError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.catalog import Product, ProductCategory, ProductVariant
from stock_kernel.models.inventory import MovementAction
from stock_kernel.models.order import Order, OrderStatus
from stock_kernel.services.bom_resolver import BomResolver
from stock_kernel.services.ledger_service import LedgerService

logger = get_logger("services.fulfillment")


class FulfillmentStatus(str, Enum):
    """Outcome of an engine operation."""

    APPLIED = "applied"
    VALIDATION_FAILED = "validation_failed"
    DATA_INTEGRITY_FAILED = "data_integrity_failed"
    ALREADY_FULFILLED = "already_fulfilled"
    STORAGE_FAILED = "storage_failed"


@dataclass(frozen=True)
class FulfillmentResult:
    """Discriminated success/failure result of one engine operation."""

    status: FulfillmentStatus
    operation: str
    message: str | None = None
    error_code: str | None = None
    movements: tuple[MovementRecord, ...] = ()
    warnings: tuple[StockWarning, ...] = ()
    order_id: UUID | None = None

    @classmethod
    def applied(
        cls,
        operation: str,
        movements: Sequence[MovementRecord],
        warnings: Sequence[StockWarning],
        order_id: UUID | None = None,
    ) -> FulfillmentResult:
        return cls(
            status=FulfillmentStatus.APPLIED,
            operation=operation,
            message=f"{operation} applied: {len(movements)} movement(s)",
            movements=tuple(movements),
            warnings=tuple(warnings),
            order_id=order_id,
        )

    @classmethod
    def failure(
        cls,
        status: FulfillmentStatus,
        operation: str,
        error: Exception,
        order_id: UUID | None = None,
    ) -> FulfillmentResult:
        return cls(
            status=status,
            operation=operation,
            message=str(error),
            error_code=getattr(error, "code", None),
            order_id=order_id,
        )

    @property
    def is_success(self) -> bool:
        return self.status == FulfillmentStatus.APPLIED


class _Work:
    """Movements and warnings collected by one operation."""

    def __init__(self) -> None:
        self.movements: list[MovementRecord] = []
        self.warnings: list[StockWarning] = []


class FulfillmentEngine:
    """
    Atomic stock operations over one Session.

    Usage:
        engine = FulfillmentEngine(session, clock, policy)
        result = engine.fulfill_order(order_id, created_by="shop")
        if not result.is_success:
            show(result.message)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: FulfillmentPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or FulfillmentPolicy()
        self._ledger = LedgerService(session, self._clock)
        self._bom = BomResolver(session)

    # =========================================================================
    # Public operations
    # =========================================================================

    def purchase(
        self,
        lines: Sequence[PurchaseLine],
        created_by: str | None = None,
    ) -> FulfillmentResult:
        """Receive raw material.  One PURCHASE (+) movement per variant."""
        return self._run(
            "purchase",
            lambda work: self._do_purchase(work, lines, created_by),
            created_by=created_by,
        )

    def manufacturing_output(
        self,
        lines: Sequence[OutputLine],
        created_by: str | None = None,
    ) -> FulfillmentResult:
        """
        Book produced units and consume their components.

        One OUTPUT (+) movement per produced variant, then one
        CONSUMPTION (-) movement per component variant aggregated across
        ALL lines, so a component shared by two products is booked once.
        """
        return self._run(
            "manufacturing_output",
            lambda work: self._do_output(work, lines, created_by),
            created_by=created_by,
        )

    def adjustment(
        self,
        lines: Sequence[AdjustmentLine],
        created_by: str | None = None,
    ) -> FulfillmentResult:
        """One ADJUSTMENT movement per line.  Not aggregated: each line keeps its reason."""
        return self._run(
            "adjustment",
            lambda work: self._do_adjustment(work, lines, created_by),
            created_by=created_by,
        )

    def fulfill_order(
        self,
        order_id: UUID,
        created_by: str | None = None,
    ) -> FulfillmentResult:
        """
        Deduct an order's lines and mark it fulfilled.

        Shared by manual and external orders.  A second call for the same
        order returns ALREADY_FULFILLED and deducts nothing.
        """
        return self._run(
            "fulfill_order",
            lambda work: self._do_fulfill(work, order_id, created_by),
            order_id=order_id,
            created_by=created_by,
        )

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _run(
        self,
        operation: str,
        body: Callable[[_Work], None],
        *,
        order_id: UUID | None = None,
        created_by: str | None = None,
    ) -> FulfillmentResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=operation,
            order_id=str(order_id) if order_id else None,
            actor_id=created_by,
        ):
            logger.info("operation_started")
            t0 = time.monotonic()
            work = _Work()

            try:
                body(work)
                self._session.commit()
            except AlreadyFulfilledError as exc:
                return self._fail(FulfillmentStatus.ALREADY_FULFILLED, operation, exc, order_id, t0)
            except (ValidationError, OrderNotFoundError) as exc:
                return self._fail(FulfillmentStatus.VALIDATION_FAILED, operation, exc, order_id, t0)
            except (DataIntegrityError, ImmutabilityViolationError) as exc:
                return self._fail(FulfillmentStatus.DATA_INTEGRITY_FAILED, operation, exc, order_id, t0)
            except StorageError as exc:
                return self._fail(FulfillmentStatus.STORAGE_FAILED, operation, exc, order_id, t0)
            except SQLAlchemyError as exc:
                return self._fail(
                    FulfillmentStatus.STORAGE_FAILED,
                    operation,
                    StorageError(operation, str(exc)),
                    order_id,
                    t0,
                )
            except Exception:
                self._session.rollback()
                logger.error(
                    "operation_failed",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                raise

            logger.info(
                "operation_completed",
                extra={
                    "status": FulfillmentStatus.APPLIED.value,
                    "movement_count": len(work.movements),
                    "warning_count": len(work.warnings),
                    "duration_ms": _elapsed_ms(t0),
                },
            )
            return FulfillmentResult.applied(
                operation, work.movements, work.warnings, order_id,
            )

    def _fail(
        self,
        status: FulfillmentStatus,
        operation: str,
        error: Exception,
        order_id: UUID | None,
        t0: float,
    ) -> FulfillmentResult:
        self._session.rollback()
        logger.info("transaction_rolled_back")

        extra = {
            "status": status.value,
            "error_code": getattr(error, "code", None),
            "duration_ms": _elapsed_ms(t0),
        }
        if status == FulfillmentStatus.ALREADY_FULFILLED:
            logger.info("operation_rejected", extra=extra)
        elif status == FulfillmentStatus.VALIDATION_FAILED:
            logger.warning("operation_rejected", extra=extra)
        else:
            logger.error("operation_rejected", extra=extra, exc_info=error)

        return FulfillmentResult.failure(status, operation, error, order_id)

    # =========================================================================
    # Operation bodies
    # =========================================================================

    def _do_purchase(self, work: _Work, lines, created_by) -> None:
        if not lines:
            raise EmptyOrderError("purchase")

        variants: dict[UUID, ProductVariant] = {}
        resolved = []
        for line in lines:
            _require_positive(line.quantity)
            product, variant = self._resolve_variant(line.product_id, line.variant_id)
            if product.category != ProductCategory.RAW:
                raise WrongCategoryError(
                    str(product.id),
                    ProductCategory(product.category).value,
                    "purchase",
                    ProductCategory.RAW.value,
                )
            variants[variant.id] = variant
            resolved.append((variant.id, line.quantity))

        for variant_id, quantity in aggregate(resolved).items():
            self._apply(work, variants[variant_id], quantity, MovementAction.PURCHASE, created_by=created_by)

    def _do_output(self, work: _Work, lines, created_by) -> None:
        if not lines:
            raise EmptyOrderError("manufacturing_output")

        variants: dict[UUID, ProductVariant] = {}
        resolved = []
        for line in lines:
            _require_positive(line.quantity)
            _, variant = self._resolve_variant(line.product_id, line.variant_id)
            variants[variant.id] = variant
            resolved.append((variant.id, line.quantity))

        produced = aggregate(resolved)

        # Expand everything before the first write
        consumed = []
        for variant_id, quantity in produced.items():
            for requirement in self._bom.resolve_components(variant_id, quantity):
                consumed.append((requirement.component_variant_id, requirement.required_quantity))
        components = aggregate(consumed)

        for variant_id, quantity in produced.items():
            self._apply(work, variants[variant_id], quantity, MovementAction.OUTPUT, created_by=created_by)

        if components:
            component_variants = self._load_variants(components.keys())
            for variant_id, quantity in components.items():
                self._apply(
                    work, component_variants[variant_id], -quantity,
                    MovementAction.CONSUMPTION, created_by=created_by,
                )

    def _do_adjustment(self, work: _Work, lines, created_by) -> None:
        if not lines:
            raise EmptyOrderError("adjustment")

        resolved = []
        for line in lines:
            _require_positive(line.quantity)
            _, variant = self._resolve_variant(line.product_id, line.variant_id)
            resolved.append((variant, line))

        for variant, line in resolved:
            self._apply(
                work, variant, line.signed_quantity, MovementAction.ADJUSTMENT,
                reason=line.reason, created_by=created_by,
            )

    def _do_fulfill(self, work: _Work, order_id: UUID, created_by) -> None:
        order = self._session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if order is None:
            raise OrderNotFoundError(str(order_id))
        if order.status == OrderStatus.FULFILLED:
            raise AlreadyFulfilledError(str(order.id), order.order_number)
        if not order.lines:
            raise EmptyOrderError("fulfill_order", str(order.id))

        totals = aggregate(order.lines)
        variants = self._load_variants(totals.keys())

        for variant_id, quantity in totals.items():
            _require_positive(quantity)
            self._apply(
                work, variants[variant_id], -quantity, MovementAction.SALE,
                reason=f"Order {order.order_number}",
                order_id=order.id, created_by=created_by,
            )

        now = self._clock.now()
        flipped = self._session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.OPEN)
            .values(status=OrderStatus.FULFILLED, processed_at=now, updated_at=now)
        )
        if flipped.rowcount == 0:
            raise AlreadyFulfilledError(str(order.id), order.order_number)

        logger.info(
            "order_fulfilled",
            extra={"order_number": order.order_number, "line_count": len(order.lines)},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _apply(
        self,
        work: _Work,
        variant: ProductVariant,
        quantity: Decimal,
        action: MovementAction,
        *,
        reason: str | None = None,
        order_id: UUID | None = None,
        created_by: str | None = None,
    ) -> None:
        record = self._ledger.apply_movement(
            variant.id,
            quantity,
            action,
            reason,
            product_id=variant.product_id,
            order_id=order_id,
            created_by=created_by,
        )
        work.movements.append(record)

        if record.quantity < 0 and record.balance_after < 0:
            if not self._policy.allow_negative_stock:
                raise InsufficientStockError(
                    str(variant.id), variant.sku, str(record.balance_after),
                )
            logger.warning(
                "negative_stock",
                extra={
                    "variant_id": str(variant.id),
                    "sku": variant.sku,
                    "balance_after": str(record.balance_after),
                },
            )
            work.warnings.append(
                StockWarning(
                    variant_id=variant.id,
                    sku=variant.sku,
                    quantity=record.balance_after,
                )
            )

    def _resolve_variant(
        self,
        product_id: UUID,
        variant_id: UUID | None,
    ) -> tuple[Product, ProductVariant]:
        """Explicit variant (checked against the product) or the product's sole variant."""
        product = self._session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))

        if variant_id is not None:
            variant = self._session.get(ProductVariant, variant_id)
            if variant is None:
                raise VariantNotFoundError(variant_id=str(variant_id))
            if variant.product_id != product.id:
                raise VariantProductMismatchError(
                    str(variant_id), str(product.id), str(variant.product_id),
                )
            return product, variant

        candidates = self._session.execute(
            select(ProductVariant).where(ProductVariant.product_id == product.id)
        ).scalars().all()
        if not candidates:
            raise VariantNotFoundError(product_id=str(product.id))
        if len(candidates) > 1:
            raise AmbiguousVariantError(str(product.id), len(candidates))
        return product, candidates[0]

    def _load_variants(self, variant_ids) -> dict[UUID, ProductVariant]:
        variant_ids = list(variant_ids)
        variants = {
            variant.id: variant
            for variant in self._session.execute(
                select(ProductVariant).where(ProductVariant.id.in_(variant_ids))
            ).scalars()
        }
        for variant_id in variant_ids:
            if variant_id not in variants:
                raise VariantNotFoundError(variant_id=str(variant_id))
        return variants


def _require_positive(quantity: Decimal) -> None:
    if not quantity.is_finite():
        raise InvalidQuantityError(str(quantity), "must be a finite number")
    if quantity <= 0:
        raise InvalidQuantityError(str(quantity))


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)
