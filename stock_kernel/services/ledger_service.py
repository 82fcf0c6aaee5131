"""
LedgerService -- the only writer of inventory movements and balances.

Responsibility:
    Append one immutable InventoryMovement and apply the same signed
    quantity to the variant's materialized InventoryBalance, inside the
    caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell, owns no transaction boundary.

Invariants enforced:
    - balance.quantity_on_hand == sum(movements.quantity) per variant.
      Movement and balance change are written in the same transaction.
    - The balance is changed with an atomic SQL increment
      (``SET quantity_on_hand = quantity_on_hand + :q``), never a
      read-modify-write in Python, so concurrent writers to the same variant
      serialize on the row lock and both increments survive.
    - A missing balance row is created inside a SAVEPOINT.  Losing the
      creation race to another transaction (IntegrityError on the unique
      variant_id) rolls back only the savepoint and retries the increment.

Failure modes:
    - InvalidQuantityError for a zero quantity.
    - SQLAlchemyError from the database propagates; the caller rolls back.

Non-goals:
    - No floor: balances may go negative.  Stock policy is the
      FulfillmentEngine's job.
    - Not idempotent: two calls record two movements.
    - Never calls ``session.commit()``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import MovementRecord, to_decimal
from stock_kernel.exceptions import InvalidQuantityError, StorageError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory import (
    InventoryBalance,
    InventoryMovement,
    MovementAction,
)

logger = get_logger("services.ledger")


class LedgerService:
    """
    Append-only movement writer with atomic balance maintenance.

    Usage:
        ledger = LedgerService(session, clock)
        record = ledger.apply_movement(variant_id, Decimal("-4"), MovementAction.SALE)
        session.commit()  # caller's decision
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def apply_movement(
        self,
        variant_id: UUID,
        quantity: Decimal,
        action: MovementAction | str,
        reason: str | None = None,
        *,
        product_id: UUID | None = None,
        order_id: UUID | None = None,
        created_by: str | None = None,
    ) -> MovementRecord:
        """
        Record one movement and apply it to the balance.

        Preconditions:
            - quantity != 0.
            - The caller is inside a transaction it will commit or roll back.
        Postconditions:
            - One new InventoryMovement row.
            - The balance row exists and has moved by exactly ``quantity``.

        Returns:
            MovementRecord with the balance as seen right after the write.

        Raises:
            InvalidQuantityError: If quantity is zero, NaN or infinite.
        """
        quantity = to_decimal(quantity)
        if not quantity.is_finite():
            raise InvalidQuantityError(str(quantity), "must be a finite number")
        if quantity == 0:
            raise InvalidQuantityError(str(quantity), "a movement must change stock")

        action = MovementAction(action)
        now = self._clock.now()

        movement = InventoryMovement(
            variant_id=variant_id,
            product_id=product_id,
            quantity=quantity,
            action=action,
            reason=reason,
            created_by=created_by,
            order_id=order_id,
            created_at=now,
        )
        self._session.add(movement)
        self._session.flush()

        balance_after = self._apply_to_balance(variant_id, quantity, now)

        logger.info(
            "movement_applied",
            extra={
                "movement_id": str(movement.id),
                "variant_id": str(variant_id),
                "action": action.value,
                "quantity": str(quantity),
                "balance_after": str(balance_after),
            },
        )

        return MovementRecord(
            movement_id=movement.id,
            variant_id=variant_id,
            quantity=quantity,
            action=action.value,
            reason=reason,
            balance_after=balance_after,
            created_at=now,
            order_id=order_id,
        )

    def get_balance(self, variant_id: UUID) -> Decimal:
        """Current quantity on hand; zero when the variant has no balance row."""
        value = self._session.execute(
            select(InventoryBalance.quantity_on_hand).where(
                InventoryBalance.variant_id == variant_id
            )
        ).scalar_one_or_none()
        return value if value is not None else Decimal("0")

    # -------------------------------------------------------------------------
    # Balance write
    # -------------------------------------------------------------------------

    def _increment(self, variant_id: UUID, quantity: Decimal, now) -> bool:
        """UPDATE branch.  True if a balance row existed and was incremented."""
        result = self._session.execute(
            update(InventoryBalance)
            .where(InventoryBalance.variant_id == variant_id)
            .values(
                quantity_on_hand=InventoryBalance.quantity_on_hand + quantity,
                updated_at=now,
            )
        )
        return result.rowcount > 0

    def _apply_to_balance(self, variant_id: UUID, quantity: Decimal, now) -> Decimal:
        if self._increment(variant_id, quantity, now):
            return self.get_balance(variant_id)

        # First movement for this variant: create the row.
        # Savepoint so a lost race doesn't roll back the caller's work.
        savepoint = self._session.begin_nested()
        try:
            self._session.add(
                InventoryBalance(
                    variant_id=variant_id,
                    quantity_on_hand=quantity,
                    updated_at=now,
                )
            )
            self._session.flush()
            savepoint.commit()
            logger.debug(
                "balance_created",
                extra={"variant_id": str(variant_id), "quantity": str(quantity)},
            )
            return quantity
        except IntegrityError:
            logger.debug(
                "balance_creation_race_retry",
                extra={"variant_id": str(variant_id)},
            )
            savepoint.rollback()

        if not self._increment(variant_id, quantity, now):
            # Row vanished between the failed insert and the retry; balances
            # are never deleted, so this is a storage fault.
            raise StorageError(
                "apply_movement",
                f"balance row for variant {variant_id} missing after creation race",
            )
        return self.get_balance(variant_id)
