"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable request lines accepted by the FulfillmentEngine and the
    immutable records it hands back: MovementRecord (one ledger write),
    ComponentRequirement (one scaled BOM row) and StockWarning (a balance
    left below zero).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No ORM imports.

Invariants enforced:
    - Quantities are always ``Decimal``.  ints and strings are converted on
      construction; floats go through ``str()`` so 0.1 stays 0.1.
    - Range checks (quantity > 0, variant exists, ...) belong to the engine,
      which reports them as a validation failure instead of raising here.

Data flow:
    PurchaseLine / OutputLine / AdjustmentLine / OrderLine
        -> FulfillmentEngine -> MovementRecord (+ StockWarning)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


def to_decimal(value) -> Decimal:
    """Convert an int / str / float / Decimal quantity to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


class AdjustmentDirection(str, Enum):
    """Sign of a manual inventory correction."""

    INCREASE = "increase"
    DECREASE = "decrease"


# =============================================================================
# Request lines
# =============================================================================


@dataclass(frozen=True)
class PurchaseLine:
    """Received raw material.  variant_id may be omitted for single-variant products."""

    product_id: UUID
    quantity: Decimal
    variant_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))


@dataclass(frozen=True)
class OutputLine:
    """Produced units of an intermediate or final product."""

    product_id: UUID
    quantity: Decimal
    variant_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))


@dataclass(frozen=True)
class AdjustmentLine:
    """A manual correction.  quantity is unsigned; direction gives the sign."""

    product_id: UUID
    quantity: Decimal
    direction: AdjustmentDirection
    reason: str | None = None
    variant_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))
        object.__setattr__(self, "direction", AdjustmentDirection(self.direction))

    @property
    def signed_quantity(self) -> Decimal:
        if self.direction == AdjustmentDirection.DECREASE:
            return -self.quantity
        return self.quantity


@dataclass(frozen=True)
class OrderLine:
    """A requested quantity of one variant on an order."""

    variant_id: UUID
    quantity: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ComponentRequirement:
    """One BOM row scaled to a produced quantity."""

    component_variant_id: UUID
    component_sku: str
    quantity_per_unit: Decimal
    required_quantity: Decimal


@dataclass(frozen=True)
class MovementRecord:
    """
    Immutable record of one ledger write.

    balance_after is the variant's quantity on hand right after this
    movement, inside the still-open transaction.
    """

    movement_id: UUID
    variant_id: UUID
    quantity: Decimal
    action: str
    reason: str | None
    balance_after: Decimal
    created_at: datetime
    order_id: UUID | None = None


@dataclass(frozen=True)
class StockWarning:
    """A movement left the variant's balance below zero."""

    variant_id: UUID
    sku: str | None
    quantity: Decimal
