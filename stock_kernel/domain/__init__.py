"""
Pure domain layer.

Data transfer objects, the clock abstraction and line aggregation, with NO
dependencies on the ORM or the database.
"""

from stock_kernel.domain.aggregation import aggregate
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AdjustmentLine,
    ComponentRequirement,
    MovementRecord,
    OrderLine,
    OutputLine,
    PurchaseLine,
    StockWarning,
)

__all__ = [
    "aggregate",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AdjustmentDirection",
    "AdjustmentLine",
    "ComponentRequirement",
    "MovementRecord",
    "OrderLine",
    "OutputLine",
    "PurchaseLine",
    "StockWarning",
]
