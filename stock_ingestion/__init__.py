"""
stock_ingestion -- intake of orders that originate outside the system.

Architecture:
    stock_ingestion/ is a top-level package above stock_kernel.  Nothing in
    the kernel imports from ingestion.  Transport and authentication belong
    to the caller; intake starts from an already-verified ExternalOrder.
"""

from stock_ingestion.external_orders import (
    ExternalOrder,
    ExternalOrderIntake,
    ExternalOrderLine,
)

__all__ = [
    "ExternalOrder",
    "ExternalOrderIntake",
    "ExternalOrderLine",
]
