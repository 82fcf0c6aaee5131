"""
Module: stock_kernel.selectors.bom_selector
Responsibility: Read-only views over bill-of-material entries -- the
    product/variant/component tree and the BOM audit.
Architecture position: Kernel > Selectors.

The audit is advisory.  It never blocks a write; BomResolver enforces the
structural rules (no self reference, no cycles) when entries are added.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.policy import StockMatrixConfig
from stock_kernel.models.catalog import BillOfMaterialEntry
from stock_kernel.selectors.base import BaseSelector, VariantDetails

UNKNOWN = "?"


class BomAuditStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    MISMATCH = "mismatch"


@dataclass
class ComponentRelation:
    bom_id: UUID
    component_variant_id: UUID
    component_product_name: str
    component_sku: str
    component_label: str
    quantity_required: Decimal


@dataclass
class VariantRelations:
    variant_id: UUID
    sku: str
    label: str
    components: list[ComponentRelation] = field(default_factory=list)


@dataclass
class ProductRelations:
    product_id: UUID
    product_name: str
    category: str
    variants: list[VariantRelations] = field(default_factory=list)


@dataclass
class BomAuditRow:
    """One BOM entry with both sides spelled out and a verdict."""

    bom_id: UUID
    product_name: str
    product_sku: str
    product_label: str
    component_name: str
    component_sku: str
    component_label: str
    quantity_required: Decimal
    status: BomAuditStatus
    note: str = ""


class BomSelector(BaseSelector):
    """
    BOM reads.

    The designated attribute used for the colour check comes from the
    StockMatrixConfig (default ``farbe``/``color``), so the audit and the
    stock matrix agree on what a colour is.
    """

    def __init__(self, session: Session, matrix_config: StockMatrixConfig | None = None):
        super().__init__(session)
        self._matrix_config = matrix_config or StockMatrixConfig()

    def _entries(self) -> list[BillOfMaterialEntry]:
        return list(
            self.session.execute(
                select(BillOfMaterialEntry).order_by(BillOfMaterialEntry.created_at)
            ).scalars()
        )

    def _details_for(self, entries: list[BillOfMaterialEntry]) -> dict[UUID, VariantDetails]:
        ids = {e.parent_variant_id for e in entries} | {e.component_variant_id for e in entries}
        return self._variant_details(ids)

    def component_relations(self) -> list[ProductRelations]:
        """
        Products that have at least one BOM entry, each with its variants
        and their direct components.

        Products sort by name, variants by SKU, components by SKU.  Entries
        whose parent variant no longer exists are left out; a missing
        component is shown with ``?`` placeholders.
        """
        entries = self._entries()
        details = self._details_for(entries)

        products: dict[UUID, ProductRelations] = {}
        variants: dict[UUID, VariantRelations] = {}
        for entry in entries:
            parent = details.get(entry.parent_variant_id)
            if parent is None:
                continue

            product = products.get(parent.product_id)
            if product is None:
                product = ProductRelations(
                    product_id=parent.product_id,
                    product_name=parent.product_name,
                    category=parent.category,
                )
                products[parent.product_id] = product

            variant = variants.get(parent.variant_id)
            if variant is None:
                variant = VariantRelations(
                    variant_id=parent.variant_id,
                    sku=parent.sku,
                    label=parent.label,
                )
                variants[parent.variant_id] = variant
                product.variants.append(variant)

            component = details.get(entry.component_variant_id)
            variant.components.append(
                ComponentRelation(
                    bom_id=entry.id,
                    component_variant_id=entry.component_variant_id,
                    component_product_name=component.product_name if component else UNKNOWN,
                    component_sku=component.sku if component else UNKNOWN,
                    component_label=component.label if component else UNKNOWN,
                    quantity_required=entry.quantity_required,
                )
            )

        for product in products.values():
            product.variants.sort(key=lambda v: v.sku)
            for variant in product.variants:
                variant.components.sort(key=lambda c: c.component_sku)
        return sorted(products.values(), key=lambda p: p.product_name.lower())

    def audit(self) -> list[BomAuditRow]:
        """
        Check every BOM entry.

        mismatch: the component (or parent) variant is missing, or the
            entry references itself.
        warning: parent and component both carry the colour attribute and
            the values differ.
        ok: everything else, including components without a colour.
        """
        entries = self._entries()
        details = self._details_for(entries)
        names = self._matrix_config.attribute_names

        rows = []
        for entry in entries:
            parent = details.get(entry.parent_variant_id)
            component = details.get(entry.component_variant_id)
            status, note = BomAuditStatus.OK, ""

            if parent is None or component is None:
                missing = "Component" if component is None else "Parent"
                status = BomAuditStatus.MISMATCH
                note = f"{missing} variant does not exist"
            elif entry.parent_variant_id == entry.component_variant_id:
                status = BomAuditStatus.MISMATCH
                note = "Variant lists itself as a component"
            else:
                parent_colour = parent.attribute(names)
                component_colour = component.attribute(names)
                if parent_colour and component_colour:
                    if self._colour_key(parent_colour) != self._colour_key(component_colour):
                        status = BomAuditStatus.WARNING
                        note = (
                            f"Product colour {parent_colour!r} differs from "
                            f"component colour {component_colour!r}"
                        )
                elif parent_colour:
                    note = "Component has no colour"

            rows.append(
                BomAuditRow(
                    bom_id=entry.id,
                    product_name=parent.product_name if parent else UNKNOWN,
                    product_sku=parent.sku if parent else UNKNOWN,
                    product_label=parent.label if parent else UNKNOWN,
                    component_name=component.product_name if component else UNKNOWN,
                    component_sku=component.sku if component else UNKNOWN,
                    component_label=component.label if component else UNKNOWN,
                    quantity_required=entry.quantity_required,
                    status=status,
                    note=note,
                )
            )
        return rows

    def _colour_key(self, value: str) -> str:
        canonical = self._matrix_config.canonical_value(value)
        return (canonical or value).strip().lower()
