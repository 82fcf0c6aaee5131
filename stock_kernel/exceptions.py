"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock operations fail for a small number of well-understood reasons, and each
reason calls for a different reaction from the caller:

  - A validation failure is the caller's mistake. Show it, do not retry.
  - A data-integrity failure means reference data is broken. Log it loudly.
  - An order conflict means the work was already done. Treat it as a no-op.
  - A storage failure left nothing behind. Retry the whole operation.

Every error therefore has a TYPED exception class, a machine-readable CODE
class attribute, and structured DATA attributes instead of a bare message.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- ValidationError
    |   +-- EmptyOrderError
    |   +-- InvalidQuantityError
    |   +-- ProductNotFoundError
    |   +-- VariantNotFoundError
    |   +-- VariantProductMismatchError
    |   +-- WrongCategoryError
    |   +-- AmbiguousVariantError
    |   +-- InsufficientStockError
    |   +-- UnmappedSkuError
    |   +-- BomEntryExistsError
    |
    +-- DataIntegrityError
    |   +-- ComponentNotFoundError
    |   +-- BomCycleError
    |
    +-- OrderError
    |   +-- OrderNotFoundError
    |   +-- AlreadyFulfilledError
    |   +-- OrderNotEditableError
    |
    +-- StorageError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | EMPTY_ORDER                 | Request or order has no line items
                | INVALID_QUANTITY            | Quantity is zero or negative
                | PRODUCT_NOT_FOUND           | Product ID doesn't exist
                | VARIANT_NOT_FOUND           | Variant ID doesn't exist / no variants
                | VARIANT_PRODUCT_MISMATCH    | Variant belongs to another product
                | WRONG_CATEGORY              | e.g. purchasing a non-RAW product
                | AMBIGUOUS_VARIANT           | No variant given, product has several
                | INSUFFICIENT_STOCK          | Negative stock forbidden by policy
                | UNMAPPED_SKU                | External SKU has no internal variant
                | BOM_ENTRY_EXISTS            | Parent/component pair already defined
----------------|-----------------------------|-----------------------------------------
Data integrity  | COMPONENT_NOT_FOUND         | BOM references a missing variant
                | BOM_CYCLE                   | BOM entry would create a cycle
----------------|-----------------------------|-----------------------------------------
Order           | ORDER_NOT_FOUND             | Order ID doesn't exist
                | ALREADY_FULFILLED           | Order status is already fulfilled
                | ORDER_NOT_EDITABLE          | Editing a fulfilled order
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_ERROR               | Transaction or commit failure
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a movement / fulfilled order

===============================================================================
HANDLING PATTERNS
===============================================================================

The FulfillmentEngine catches these and returns a FulfillmentResult, so most
callers only ever look at ``result.status`` and ``result.error_code``.
Code that talks to OrderService or BomResolver directly catches by type:

    try:
        orders.update_order(order_id, ...)
    except OrderNotEditableError as e:
        notify_user(f"Order {e.order_id} is already fulfilled")
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation exceptions


class ValidationError(StockKernelError):
    """Base exception for invalid requests. Never retried automatically."""

    code: str = "VALIDATION_ERROR"


class EmptyOrderError(ValidationError):
    """Request or order carries no line items."""

    code: str = "EMPTY_ORDER"

    def __init__(self, operation: str, order_id: str | None = None):
        self.operation = operation
        self.order_id = order_id
        if order_id:
            super().__init__(f"Order {order_id} has no line items")
        else:
            super().__init__(f"{operation} request has no line items")


class InvalidQuantityError(ValidationError):
    """Quantity must be strictly positive (or non-zero for movements)."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, reason: str = "must be positive"):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class ProductNotFoundError(ValidationError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class VariantNotFoundError(ValidationError):
    """Variant does not exist, or a product has no variants at all."""

    code: str = "VARIANT_NOT_FOUND"

    def __init__(self, variant_id: str | None = None, product_id: str | None = None):
        self.variant_id = variant_id
        self.product_id = product_id
        if variant_id:
            super().__init__(f"Variant {variant_id} not found")
        else:
            super().__init__(f"No variant found for product {product_id}")


class VariantProductMismatchError(ValidationError):
    """Variant exists but belongs to a different product."""

    code: str = "VARIANT_PRODUCT_MISMATCH"

    def __init__(self, variant_id: str, product_id: str, actual_product_id: str):
        self.variant_id = variant_id
        self.product_id = product_id
        self.actual_product_id = actual_product_id
        super().__init__(
            f"Invalid variant {variant_id} for product {product_id}"
        )


class WrongCategoryError(ValidationError):
    """Product category is not allowed for this operation."""

    code: str = "WRONG_CATEGORY"

    def __init__(self, product_id: str, category: str, operation: str, expected: str):
        self.product_id = product_id
        self.category = category
        self.operation = operation
        self.expected = expected
        super().__init__(
            f"Only {expected} products are allowed for {operation}; "
            f"product {product_id} is {category}"
        )


class AmbiguousVariantError(ValidationError):
    """No variant specified and the product has more than one."""

    code: str = "AMBIGUOUS_VARIANT"

    def __init__(self, product_id: str, variant_count: int):
        self.product_id = product_id
        self.variant_count = variant_count
        super().__init__(
            f"Product {product_id} has {variant_count} variants; "
            f"a variant must be specified"
        )


class InsufficientStockError(ValidationError):
    """Movement would leave a negative balance and policy forbids it."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, variant_id: str, sku: str | None, resulting_quantity: str):
        self.variant_id = variant_id
        self.sku = sku
        self.resulting_quantity = resulting_quantity
        super().__init__(
            f"Insufficient stock for {sku or variant_id}: "
            f"balance would become {resulting_quantity}"
        )


class UnmappedSkuError(ValidationError):
    """External order references SKUs with no internal variant."""

    code: str = "UNMAPPED_SKU"

    def __init__(self, external_order_id: str, skus: list[str]):
        self.external_order_id = external_order_id
        self.skus = skus
        super().__init__(
            f"Unmapped items in order {external_order_id}: {', '.join(skus)}"
        )


class BomEntryExistsError(ValidationError):
    """Parent/component pair already has a BOM entry."""

    code: str = "BOM_ENTRY_EXISTS"

    def __init__(self, parent_variant_id: str, component_variant_id: str):
        self.parent_variant_id = parent_variant_id
        self.component_variant_id = component_variant_id
        super().__init__(
            f"BOM entry {parent_variant_id} -> {component_variant_id} already exists"
        )


# Data integrity exceptions


class DataIntegrityError(StockKernelError):
    """Base exception for broken reference data. Fatal to the operation."""

    code: str = "DATA_INTEGRITY_ERROR"


class ComponentNotFoundError(DataIntegrityError):
    """BOM entry references a component variant that no longer exists."""

    code: str = "COMPONENT_NOT_FOUND"

    def __init__(self, parent_variant_id: str, component_variant_id: str):
        self.parent_variant_id = parent_variant_id
        self.component_variant_id = component_variant_id
        super().__init__(
            f"Component variant {component_variant_id} not found "
            f"(required by {parent_variant_id})"
        )


class BomCycleError(DataIntegrityError):
    """BOM entry would reference itself directly or transitively."""

    code: str = "BOM_CYCLE"

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"BOM cycle detected: {' -> '.join(path)}")


# Order exceptions


class OrderError(StockKernelError):
    """Base exception for order lifecycle errors."""

    code: str = "ORDER_ERROR"


class OrderNotFoundError(OrderError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class AlreadyFulfilledError(OrderError):
    """Order has already been fulfilled. A conflict, not a retryable fault."""

    code: str = "ALREADY_FULFILLED"

    def __init__(self, order_id: str, order_number: str | None = None):
        self.order_id = order_id
        self.order_number = order_number
        super().__init__(
            f"Order {order_number or order_id} is already fulfilled"
        )


class OrderNotEditableError(OrderError):
    """Fulfilled orders cannot be edited."""

    code: str = "ORDER_NOT_EDITABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status} and cannot be edited")


# Storage exceptions


class StorageError(StockKernelError):
    """Transaction or commit failure. Nothing was committed; safe to retry."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Immutability exceptions


class ImmutabilityViolationError(StockKernelError):
    """Attempt to modify an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
