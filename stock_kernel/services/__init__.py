"""
Services layer - stateful operations over a Session.

LedgerService and BomResolver never commit.  FulfillmentEngine and
OrderService own their transaction boundary.
"""

from stock_kernel.services.bom_resolver import BomResolver
from stock_kernel.services.fulfillment_service import (
    FulfillmentEngine,
    FulfillmentResult,
    FulfillmentStatus,
)
from stock_kernel.services.ledger_service import LedgerService
from stock_kernel.services.order_service import OrderService

__all__ = [
    "BomResolver",
    "FulfillmentEngine",
    "FulfillmentResult",
    "FulfillmentStatus",
    "LedgerService",
    "OrderService",
]
