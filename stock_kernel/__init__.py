"""
Stock Kernel - Inventory Ledger & Atomic Fulfillment Engine

An append-only stock ledger for a small manufacturing operation with:
- Immutable inventory movements
- Materialized per-variant balances
- Single-level bill-of-materials production
- Atomic, aggregated order fulfillment
"""

__version__ = "0.1.0"
