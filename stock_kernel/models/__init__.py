"""Domain models for the stock kernel."""

from stock_kernel.models.catalog import (
    BillOfMaterialEntry,
    Product,
    ProductCategory,
    ProductVariant,
    ProductVariantSelection,
    ProductVariation,
    ProductVariationOption,
)
from stock_kernel.models.inventory import (
    InventoryBalance,
    InventoryMovement,
    MovementAction,
)
from stock_kernel.models.order import (
    Order,
    OrderLineItem,
    OrderSource,
    OrderStatus,
)

__all__ = [
    "Product",
    "ProductCategory",
    "ProductVariant",
    "ProductVariation",
    "ProductVariationOption",
    "ProductVariantSelection",
    "BillOfMaterialEntry",
    "InventoryMovement",
    "InventoryBalance",
    "MovementAction",
    "Order",
    "OrderLineItem",
    "OrderSource",
    "OrderStatus",
]
