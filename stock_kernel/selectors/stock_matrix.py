"""
Module: stock_kernel.selectors.stock_matrix
Responsibility: Product x colour stock matrix for reorder decisions.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A cell is None when no variant of the product maps to the column;
      an empty column is never reported as zero stock.
    - Always computed from current balances.  Nothing is cached.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_kernel.domain.policy import StockMatrixConfig
from stock_kernel.logging_config import get_logger
from stock_kernel.selectors.inventory_selector import InventorySelector

logger = get_logger("selectors.stock_matrix")


@dataclass(frozen=True)
class MatrixCell:
    quantity: Decimal
    minimum: Decimal

    @property
    def needs_reorder(self) -> bool:
        return self.quantity <= self.minimum


@dataclass
class MatrixRow:
    product_name: str
    category: str
    cells: dict[str, MatrixCell | None] = field(default_factory=dict)


@dataclass
class StockMatrix:
    columns: list[str]
    rows: list[MatrixRow]

    def row(self, product_name: str) -> MatrixRow | None:
        for row in self.rows:
            if row.product_name == product_name:
                return row
        return None


class StockMatrixProjection:
    """
    Builds a StockMatrix from the inventory list.

    Variants are grouped by product name.  A variant lands in a column when
    its designated attribute (config.attribute_names) maps to that column
    through config.canonical_value(); variants without the attribute, or
    with a value outside the configured columns, are not shown.
    """

    def __init__(self, session: Session, config: StockMatrixConfig | None = None):
        self._inventory = InventorySelector(session)
        self._config = config or StockMatrixConfig()

    def build(self) -> StockMatrix:
        grouped: dict[str, dict[str, list]] = {}
        categories: dict[str, str] = {}
        observed: set[str] = set()

        for item in self._inventory.list_inventory():
            categories.setdefault(item.product_name, item.category)
            by_column = grouped.setdefault(item.product_name, {})

            raw = item.attribute(self._config.attribute_names)
            if raw is None:
                continue
            column = self._config.canonical_value(raw)
            if column is None:
                continue
            observed.add(column)
            by_column.setdefault(column, []).append(item)

        columns = list(self._config.column_values) or sorted(observed)

        rows = []
        for product_name in sorted(grouped, key=str.lower):
            cells: dict[str, MatrixCell | None] = {}
            for column in columns:
                items = grouped[product_name].get(column)
                if not items:
                    cells[column] = None
                    continue
                cells[column] = MatrixCell(
                    quantity=sum((i.quantity_on_hand for i in items), Decimal("0")),
                    minimum=sum((i.minimum_stock_level for i in items), Decimal("0")),
                )
            rows.append(
                MatrixRow(
                    product_name=product_name,
                    category=categories[product_name],
                    cells=cells,
                )
            )

        logger.debug(
            "stock_matrix_built",
            extra={"row_count": len(rows), "column_count": len(columns)},
        )
        return StockMatrix(columns=columns, rows=rows)
