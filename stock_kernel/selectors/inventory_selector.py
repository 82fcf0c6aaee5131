"""
Module: stock_kernel.selectors.inventory_selector
Responsibility: Read-only stock queries -- the inventory list, movement
    history and the ledger/balance reconciliation check.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - verify_ledger_consistency() is the executable form of
      balance.quantity_on_hand == sum(movement.quantity) per variant.
      An empty result means the ledger is consistent.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.models.inventory import (
    InventoryBalance,
    InventoryMovement,
    MovementAction,
)
from stock_kernel.selectors.base import NO_ATTRIBUTES_LABEL, BaseSelector


@dataclass
class InventoryRow:
    """Current stock of one variant."""

    variant_id: UUID
    product_id: UUID
    product_name: str
    category: str
    unit: str
    sku: str
    variant_label: str
    quantity_on_hand: Decimal
    minimum_stock_level: Decimal
    attributes: tuple[tuple[str, str], ...] = field(default=())

    @property
    def needs_reorder(self) -> bool:
        return self.quantity_on_hand <= self.minimum_stock_level

    def attribute(self, names: Iterable[str]) -> str | None:
        wanted = {name.lower() for name in names}
        for name, value in self.attributes:
            if name.lower() in wanted:
                return value
        return None


@dataclass
class MovementRow:
    """One movement with its product and variant spelled out."""

    movement_id: UUID
    variant_id: UUID
    product_name: str | None
    sku: str | None
    variant_label: str
    action: str
    quantity: Decimal
    reason: str | None
    created_by: str | None
    order_id: UUID | None
    created_at: datetime


@dataclass
class BalanceDiscrepancy:
    """A variant whose stored balance disagrees with its movements."""

    variant_id: UUID
    balance: Decimal | None  # None: movements exist but no balance row
    movement_total: Decimal

    @property
    def difference(self) -> Decimal:
        return (self.balance or Decimal("0")) - self.movement_total


class InventorySelector(BaseSelector):
    """Read-only queries over balances and movements."""

    def balances(self) -> dict[UUID, Decimal]:
        """Variant -> quantity on hand, for variants that have a balance row."""
        rows = self.session.execute(
            select(InventoryBalance.variant_id, InventoryBalance.quantity_on_hand)
        ).all()
        return {variant_id: quantity for variant_id, quantity in rows}

    def list_inventory(self) -> list[InventoryRow]:
        """
        One row per catalog variant, ordered by product name then SKU.

        Variants that never moved show zero on hand.
        """
        balances = self.balances()
        rows = [
            InventoryRow(
                variant_id=details.variant_id,
                product_id=details.product_id,
                product_name=details.product_name,
                category=details.category,
                unit=details.unit,
                sku=details.sku,
                variant_label=details.label,
                quantity_on_hand=balances.get(details.variant_id, Decimal("0")),
                minimum_stock_level=details.minimum_stock_level,
                attributes=details.attributes,
            )
            for details in self._variant_details().values()
        ]
        rows.sort(key=lambda row: (row.product_name.lower(), row.sku))
        return rows

    def movement_history(
        self,
        actions: Iterable[MovementAction | str] | None = None,
        variant_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[MovementRow]:
        """Movements newest first, optionally filtered by action and variant."""
        stmt = select(InventoryMovement).order_by(InventoryMovement.created_at.desc())
        if actions is not None:
            stmt = stmt.where(
                InventoryMovement.action.in_([MovementAction(a).value for a in actions])
            )
        if variant_id is not None:
            stmt = stmt.where(InventoryMovement.variant_id == variant_id)
        if limit is not None:
            stmt = stmt.limit(limit)

        movements = list(self.session.execute(stmt).scalars())
        details = self._variant_details({m.variant_id for m in movements})

        history = []
        for movement in movements:
            info = details.get(movement.variant_id)
            history.append(
                MovementRow(
                    movement_id=movement.id,
                    variant_id=movement.variant_id,
                    product_name=info.product_name if info else None,
                    sku=info.sku if info else None,
                    variant_label=info.label if info else NO_ATTRIBUTES_LABEL,
                    action=MovementAction(movement.action).value,
                    quantity=movement.quantity,
                    reason=movement.reason,
                    created_by=movement.created_by,
                    order_id=movement.order_id,
                    created_at=movement.created_at,
                )
            )
        return history

    def verify_ledger_consistency(self) -> list[BalanceDiscrepancy]:
        """Every variant whose balance differs from the sum of its movements."""
        totals = dict(
            self.session.execute(
                select(
                    InventoryMovement.variant_id,
                    func.sum(InventoryMovement.quantity),
                ).group_by(InventoryMovement.variant_id)
            ).all()
        )
        balances = self.balances()

        discrepancies = []
        for variant_id in sorted(set(totals) | set(balances), key=str):
            total = totals.get(variant_id, Decimal("0"))
            balance = balances.get(variant_id)
            if balance is None or balance != total:
                discrepancies.append(
                    BalanceDiscrepancy(
                        variant_id=variant_id,
                        balance=balance,
                        movement_total=total,
                    )
                )
        return discrepancies
