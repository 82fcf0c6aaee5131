"""
BomResolver -- single-level bill-of-materials expansion.

Responsibility:
    Turn "produce N of variant P" into the list of component variants and
    quantities that production consumes, and guard the only write path for
    BOM rows.

Architecture position:
    Kernel > Services.  Reads catalog rows, writes BillOfMaterialEntry rows
    via add_component().  Never commits.

Invariants enforced:
    - required_quantity = quantity_required * produced_quantity in Decimal
      arithmetic.  Fractional units (grams per piece) are not truncated.
    - A BOM row pointing at a missing component variant is a data-integrity
      failure, never silently skipped.
    - No self reference and no cycle (parent -> ... -> parent) can be
      written.

Non-goals:
    - Components of components are never expanded: exactly one level per
      production event.
"""

from collections import deque
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.dtos import ComponentRequirement, to_decimal
from stock_kernel.exceptions import (
    BomCycleError,
    BomEntryExistsError,
    ComponentNotFoundError,
    InvalidQuantityError,
    VariantNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.catalog import BillOfMaterialEntry, ProductVariant

logger = get_logger("services.bom_resolver")


class BomResolver:
    """Reads and maintains single-level BOM rows."""

    def __init__(self, session: Session):
        self._session = session

    def resolve_components(
        self,
        parent_variant_id: UUID,
        produced_quantity: Decimal,
    ) -> list[ComponentRequirement]:
        """
        Scale the parent's BOM rows to a produced quantity.

        Returns:
            One ComponentRequirement per BOM row, ordered by component SKU
            then id.  Empty for variants without BOM rows.

        Raises:
            ComponentNotFoundError: A BOM row references a component variant
                that does not exist.
        """
        produced_quantity = to_decimal(produced_quantity)

        entries = self._session.execute(
            select(BillOfMaterialEntry).where(
                BillOfMaterialEntry.parent_variant_id == parent_variant_id
            )
        ).scalars().all()

        if not entries:
            return []

        component_ids = [entry.component_variant_id for entry in entries]
        skus = dict(
            self._session.execute(
                select(ProductVariant.id, ProductVariant.sku).where(
                    ProductVariant.id.in_(component_ids)
                )
            ).all()
        )

        requirements = []
        for entry in entries:
            sku = skus.get(entry.component_variant_id)
            if sku is None:
                logger.error(
                    "bom_component_missing",
                    extra={
                        "parent_variant_id": str(parent_variant_id),
                        "component_variant_id": str(entry.component_variant_id),
                    },
                )
                raise ComponentNotFoundError(
                    str(parent_variant_id), str(entry.component_variant_id),
                )
            requirements.append(
                ComponentRequirement(
                    component_variant_id=entry.component_variant_id,
                    component_sku=sku,
                    quantity_per_unit=entry.quantity_required,
                    required_quantity=entry.quantity_required * produced_quantity,
                )
            )

        requirements.sort(key=lambda r: (r.component_sku, str(r.component_variant_id)))
        return requirements

    def add_component(
        self,
        parent_variant_id: UUID,
        component_variant_id: UUID,
        quantity_required: Decimal,
    ) -> BillOfMaterialEntry:
        """
        Add one BOM row after checking quantity, existence, uniqueness and
        acyclicity.  Flushes; the caller commits.

        Raises:
            InvalidQuantityError: quantity_required <= 0.
            VariantNotFoundError: parent or component does not exist.
            BomCycleError: self reference, or component already (transitively)
                requires parent.
            BomEntryExistsError: the pair already has a row.
        """
        quantity_required = to_decimal(quantity_required)
        if not quantity_required.is_finite() or quantity_required <= 0:
            raise InvalidQuantityError(str(quantity_required))

        for variant_id in (parent_variant_id, component_variant_id):
            if self._session.get(ProductVariant, variant_id) is None:
                raise VariantNotFoundError(variant_id=str(variant_id))

        if parent_variant_id == component_variant_id:
            raise BomCycleError([str(parent_variant_id), str(component_variant_id)])

        existing = self._session.execute(
            select(BillOfMaterialEntry.id).where(
                BillOfMaterialEntry.parent_variant_id == parent_variant_id,
                BillOfMaterialEntry.component_variant_id == component_variant_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise BomEntryExistsError(str(parent_variant_id), str(component_variant_id))

        path = self._find_path(component_variant_id, parent_variant_id)
        if path is not None:
            raise BomCycleError([str(parent_variant_id)] + [str(v) for v in path])

        entry = BillOfMaterialEntry(
            parent_variant_id=parent_variant_id,
            component_variant_id=component_variant_id,
            quantity_required=quantity_required,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "bom_component_added",
            extra={
                "parent_variant_id": str(parent_variant_id),
                "component_variant_id": str(component_variant_id),
                "quantity_required": str(quantity_required),
            },
        )
        return entry

    def _find_path(self, start: UUID, target: UUID) -> list[UUID] | None:
        """Breadth-first search over parent -> component edges."""
        previous: dict[UUID, UUID | None] = {start: None}
        frontier = deque([start])

        while frontier:
            current = frontier.popleft()
            children = self._session.execute(
                select(BillOfMaterialEntry.component_variant_id).where(
                    BillOfMaterialEntry.parent_variant_id == current
                )
            ).scalars().all()

            for child in children:
                if child in previous:
                    continue
                previous[child] = current
                if child == target:
                    path = [child]
                    node = current
                    while node is not None:
                        path.append(node)
                        node = previous[node]
                    return list(reversed(path))
                frontier.append(child)

        return None
