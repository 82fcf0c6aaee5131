"""
Module: stock_kernel.models.catalog
Responsibility: ORM persistence for catalog reference data -- products,
    their variants (SKUs), variant attributes and single-level bills of
    material.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - ProductVariant.sku is unique; it is the stable external-facing code.
    - BillOfMaterialEntry is unique per (parent, component).  Acyclicity is
      checked by BomResolver.add_component before any row is written.
    - BOM rows reference variants via UUID with NO foreign key, so a
      component removed by the catalog shows up as a data-integrity error
      during resolution instead of being cascaded away silently.

Failure modes:
    - IntegrityError on duplicate sku or duplicate BOM pair.

Audit relevance:
    Catalog rows are reference data owned by the catalog collaborator.  The
    stock kernel only reads them, apart from BOM entries created through
    BomResolver.add_component.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UUIDString


class ProductCategory(str, Enum):
    """Where a product sits in the production chain."""

    RAW = "RAW"
    INTERMEDIATE = "INTERMEDIATE"
    FINAL = "FINAL"


class Product(TrackedBase):
    """
    A product such as a raw material, an assembly or a finished good.

    Guarantees:
        - Has one or more variants once set up by the catalog.
        - category is one of ProductCategory, stored as its string value.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_name", "name"),
        Index("idx_product_category", "category"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[ProductCategory] = mapped_column(
        String(20),
        nullable=False,
    )

    # Unit of measure (pcs, g, m, ...)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")

    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product",
        order_by="ProductVariant.sku",
    )

    variations: Mapped[list["ProductVariation"]] = relationship(
        back_populates="product",
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.category})>"


class ProductVariant(TrackedBase):
    """
    A stock-keeping unit: one concrete configuration of a product.

    Guarantees:
        - sku is unique across all products.
        - minimum_stock_level >= 0; drives reorder reporting only.
    """

    __tablename__ = "product_variants"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_variant_sku"),
        Index("idx_product_variant_product", "product_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    minimum_stock_level: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    product: Mapped[Product] = relationship(back_populates="variants")

    selections: Mapped[list["ProductVariantSelection"]] = relationship(
        back_populates="variant",
    )

    def attribute_values(self) -> list[tuple[str, str]]:
        """(variation name, option value) pairs, in variation-name order."""
        pairs = [
            (selection.variation.name, selection.option.value)
            for selection in self.selections
        ]
        return sorted(pairs, key=lambda pair: pair[0].lower())

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku}>"


class ProductVariation(Base):
    """A named dimension along which a product varies, e.g. "Farbe"."""

    __tablename__ = "product_variations"

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    product: Mapped[Product] = relationship(back_populates="variations")

    options: Mapped[list["ProductVariationOption"]] = relationship(
        back_populates="variation",
    )


class ProductVariationOption(Base):
    """One allowed value of a variation, e.g. "Rot"."""

    __tablename__ = "product_variation_options"

    variation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_variations.id"),
        nullable=False,
    )

    value: Mapped[str] = mapped_column(String(100), nullable=False)

    variation: Mapped[ProductVariation] = relationship(back_populates="options")


class ProductVariantSelection(Base):
    """Join row: variant X has option Y for variation Z."""

    __tablename__ = "product_variant_selections"

    __table_args__ = (
        UniqueConstraint(
            "variant_id", "variation_id", name="uq_variant_selection_variation",
        ),
    )

    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_variants.id"),
        nullable=False,
    )

    variation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_variations.id"),
        nullable=False,
    )

    option_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_variation_options.id"),
        nullable=False,
    )

    variant: Mapped[ProductVariant] = relationship(back_populates="selections")
    variation: Mapped[ProductVariation] = relationship()
    option: Mapped[ProductVariationOption] = relationship()


class BillOfMaterialEntry(TrackedBase):
    """
    One component requirement of a parent variant.

    To produce 1 unit of the parent, quantity_required units of the
    component are consumed.  Exactly one level deep.

    Guarantees:
        - quantity_required > 0 (checked on the write path).
        - parent_variant_id != component_variant_id.
    """

    __tablename__ = "variant_bill_of_materials"

    __table_args__ = (
        UniqueConstraint(
            "parent_variant_id",
            "component_variant_id",
            name="uq_bom_parent_component",
        ),
        Index("idx_bom_parent", "parent_variant_id"),
        Index("idx_bom_component", "component_variant_id"),
    )

    # Variant references (no FK)
    parent_variant_id: Mapped[UUID] = mapped_column(nullable=False)
    component_variant_id: Mapped[UUID] = mapped_column(nullable=False)

    quantity_required: Mapped[Decimal] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<BillOfMaterialEntry {self.parent_variant_id} -> "
            f"{self.component_variant_id} x{self.quantity_required}>"
        )
