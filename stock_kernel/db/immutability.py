"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is only trustworthy if its history cannot be rewritten.
A movement, once recorded, is a fact; a correction is a NEW adjustment
movement, never an edit of the old one.  Likewise a fulfilled order has
already deducted stock, so changing its lines afterwards would make the
order disagree with the ledger.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/*.sql (PostgreSQL triggers)
    - Catches raw SQL, bulk UPDATE statements, direct psql access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | When Immutable                  | Allowed
-------------------|---------------------------------|--------------------------
InventoryMovement  | ALWAYS                          | INSERT only
InventoryBalance   | ALWAYS via the unit of work     | INSERT, atomic SQL increment
Order              | After status = fulfilled        | updated_at
OrderLineItem      | When parent order is fulfilled  | nothing

===============================================================================
DESIGN DECISIONS
===============================================================================

1. BALANCE UPDATES GO AROUND THE UNIT OF WORK.
   LedgerService increments balances with an UPDATE statement, which does
   not fire mapper events.  A flush that carries a Python-side change to a
   balance object is therefore always a read-modify-write and is blocked.

2. "WAS FULFILLED" NOT "IS FULFILLED".
   Flipping open -> fulfilled through the ORM is allowed (that IS the
   fulfillment).  Any change after that transition is blocked.  Attribute
   history tells the two apart.

3. LINE CHECKS ASK THE DATABASE.
   A line removed from its order's collection has already lost its
   ``order`` reference by flush time, so the parent status is read through
   the flush connection using ``order_id``.

===============================================================================
USAGE
===============================================================================

Registered by init_engine_from_url().  Registration is idempotent.

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "db_operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# -----------------------------------------------------------------------------
# InventoryMovement
# -----------------------------------------------------------------------------


def _check_movement_update(mapper, connection, target):
    """Movements are append-only."""
    _block(
        "InventoryMovement", target.id, "UPDATE",
        "Inventory movements are immutable; record an adjustment instead",
    )


def _check_movement_delete(mapper, connection, target):
    _block(
        "InventoryMovement", target.id, "DELETE",
        "Inventory movements cannot be deleted",
    )


# -----------------------------------------------------------------------------
# InventoryBalance
# -----------------------------------------------------------------------------


def _check_balance_update(mapper, connection, target):
    """Balances only change through the ledger's atomic increment."""
    _block(
        "InventoryBalance", target.id, "UPDATE",
        "Balances change only through ledger movements",
    )


def _check_balance_delete(mapper, connection, target):
    _block(
        "InventoryBalance", target.id, "DELETE",
        "Balance rows are never deleted",
    )


# -----------------------------------------------------------------------------
# Order
# -----------------------------------------------------------------------------


def _check_order_immutability(mapper, connection, target):
    """
    Prevent changes to fulfilled orders.

        1. status changing FROM fulfilled: block (reopening)
        2. status unchanged AND fulfilled: block any other field change
        3. status changing TO fulfilled: allow (this IS the fulfillment)
    """
    from stock_kernel.models.order import Order, OrderStatus

    if not isinstance(target, Order):
        return

    status_history = get_history(target, "status")

    was_fulfilled = False
    if status_history.deleted:
        was_fulfilled = status_history.deleted[0] == OrderStatus.FULFILLED
    elif not status_history.added:
        was_fulfilled = target.status == OrderStatus.FULFILLED

    if not was_fulfilled:
        return

    for attr in inspect(target).attrs:
        if attr.key in ("updated_at", "lines"):
            continue
        if attr.history.has_changes():
            _block(
                "Order", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on fulfilled order",
                field=attr.key,
            )


def _check_order_delete(mapper, connection, target):
    from stock_kernel.models.order import OrderStatus

    if target.status == OrderStatus.FULFILLED:
        _block(
            "Order", target.id, "DELETE",
            "Fulfilled orders cannot be deleted",
        )


# -----------------------------------------------------------------------------
# OrderLineItem
# -----------------------------------------------------------------------------


def _parent_order_fulfilled(connection, order_id) -> bool:
    from stock_kernel.models.order import Order, OrderStatus

    if order_id is None:
        return False
    status = connection.execute(
        select(Order.status).where(Order.id == order_id)
    ).scalar_one_or_none()
    return status == OrderStatus.FULFILLED


def _make_line_check(operation: str):
    def _check(mapper, connection, target):
        if _parent_order_fulfilled(connection, target.order_id):
            _block(
                "OrderLineItem", target.id, operation,
                "Lines of a fulfilled order cannot be changed",
                order_id=str(target.order_id),
            )

    _check.__name__ = f"_check_order_line_{operation.lower()}"
    return _check


_check_order_line_insert = _make_line_check("INSERT")
_check_order_line_update = _make_line_check("UPDATE")
_check_order_line_delete = _make_line_check("DELETE")


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def _listener_table():
    from stock_kernel.models.inventory import InventoryBalance, InventoryMovement
    from stock_kernel.models.order import Order, OrderLineItem

    return [
        (InventoryMovement, "before_update", _check_movement_update),
        (InventoryMovement, "before_delete", _check_movement_delete),
        (InventoryBalance, "before_update", _check_balance_update),
        (InventoryBalance, "before_delete", _check_balance_delete),
        (Order, "before_update", _check_order_immutability),
        (Order, "before_delete", _check_order_delete),
        (OrderLineItem, "before_insert", _check_order_line_insert),
        (OrderLineItem, "before_update", _check_order_line_update),
        (OrderLineItem, "before_delete", _check_order_line_delete),
    ]


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
