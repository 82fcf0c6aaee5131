"""
Module: stock_kernel.selectors.base
Responsibility: Base class for all read-only query selectors, plus the
    variant lookup every stock read needs (product, sku, attributes, label).
Architecture position: Kernel > Selectors.  May import from db/ and
    models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but never
      add, delete, flush or commit.
    - DTO return convention: selectors return dataclasses, not ORM rows.
"""

from abc import ABC
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, selectinload

from stock_kernel.models.catalog import (
    ProductCategory,
    ProductVariant,
    ProductVariantSelection,
)

NO_ATTRIBUTES_LABEL = "–"


@dataclass(frozen=True)
class VariantDetails:
    """Catalog facts about one variant, flattened for reporting."""

    variant_id: UUID
    sku: str
    product_id: UUID
    product_name: str
    category: str
    unit: str
    minimum_stock_level: Decimal
    attributes: tuple[tuple[str, str], ...] = field(default=())

    @property
    def label(self) -> str:
        """``"Farbe: Rot, Größe: L"`` or a dash for variants without attributes."""
        if not self.attributes:
            return NO_ATTRIBUTES_LABEL
        return ", ".join(f"{name}: {value}" for name, value in self.attributes)

    def attribute(self, names: Iterable[str]) -> str | None:
        """Value of the first attribute whose name matches (case-insensitive)."""
        wanted = {name.lower() for name in names}
        for name, value in self.attributes:
            if name.lower() in wanted:
                return value
        return None


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - No commit, flush, add, or delete operations are performed.
    """

    def __init__(self, session: Session):
        self.session = session

    def _variant_details(
        self,
        variant_ids: Iterable[UUID] | None = None,
    ) -> dict[UUID, VariantDetails]:
        """Load variants (all, or the given ids) with product and attributes."""
        stmt = select(ProductVariant).options(
            joinedload(ProductVariant.product),
            selectinload(ProductVariant.selections).joinedload(
                ProductVariantSelection.variation
            ),
            selectinload(ProductVariant.selections).joinedload(
                ProductVariantSelection.option
            ),
        ).execution_options(populate_existing=True)
        if variant_ids is not None:
            ids = list(variant_ids)
            if not ids:
                return {}
            stmt = stmt.where(ProductVariant.id.in_(ids))

        details = {}
        for variant in self.session.execute(stmt).unique().scalars():
            details[variant.id] = VariantDetails(
                variant_id=variant.id,
                sku=variant.sku,
                product_id=variant.product_id,
                product_name=variant.product.name,
                category=ProductCategory(variant.product.category).value,
                unit=variant.product.unit,
                minimum_stock_level=variant.minimum_stock_level,
                attributes=tuple(variant.attribute_values()),
            )
        return details
