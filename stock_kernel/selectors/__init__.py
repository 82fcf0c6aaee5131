"""
Selectors layer - read-only queries.

Selectors take a Session, never write, and return dataclasses.
"""

from stock_kernel.selectors.base import NO_ATTRIBUTES_LABEL, BaseSelector, VariantDetails
from stock_kernel.selectors.bom_selector import (
    BomAuditRow,
    BomAuditStatus,
    BomSelector,
    ComponentRelation,
    ProductRelations,
    VariantRelations,
)
from stock_kernel.selectors.inventory_selector import (
    BalanceDiscrepancy,
    InventoryRow,
    InventorySelector,
    MovementRow,
)
from stock_kernel.selectors.stock_matrix import (
    MatrixCell,
    MatrixRow,
    StockMatrix,
    StockMatrixProjection,
)

__all__ = [
    "NO_ATTRIBUTES_LABEL",
    "BalanceDiscrepancy",
    "BaseSelector",
    "BomAuditRow",
    "BomAuditStatus",
    "BomSelector",
    "ComponentRelation",
    "InventoryRow",
    "InventorySelector",
    "MatrixCell",
    "MatrixRow",
    "MovementRow",
    "ProductRelations",
    "StockMatrix",
    "StockMatrixProjection",
    "VariantDetails",
    "VariantRelations",
]
