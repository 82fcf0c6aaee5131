"""
Aggregation -- net multi-line requests into one quantity per variant.

One request must write at most one ledger movement per variant and action:
the ledger stays readable and a balance row is touched once per
transaction.  ``aggregate`` is the single place where lines are netted.

Pure function, zero I/O.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.domain.dtos import to_decimal


def _unpack(line: Any) -> tuple[UUID, Decimal]:
    if isinstance(line, tuple):
        variant_id, quantity = line
    else:
        variant_id, quantity = line.variant_id, line.quantity
    return variant_id, to_decimal(quantity)


def aggregate(lines: Iterable[Any]) -> dict[UUID, Decimal]:
    """
    Sum quantities per variant.

    Args:
        lines: Objects with ``variant_id`` and ``quantity`` attributes, or
            ``(variant_id, quantity)`` tuples.

    Returns:
        Variant -> net quantity, in order of first appearance.  Empty input
        gives an empty dict.
    """
    totals: dict[UUID, Decimal] = {}
    for line in lines:
        variant_id, quantity = _unpack(line)
        totals[variant_id] = totals.get(variant_id, Decimal("0")) + quantity
    return totals
