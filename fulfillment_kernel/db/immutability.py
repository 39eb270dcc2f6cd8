"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The fulfillment audit trail must be tamper-proof: who reserved which stock,
who moved which order where, and which discrepancies were reported.  This
module is the FIRST layer of enforcement:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/*.sql (PostgreSQL triggers, installed by db/triggers.py)
    - Catches raw SQL, bulk UPDATE statements, direct psql access

Both layers enforce the SAME rules.  Audit rows themselves are always
written in-process by the services; neither layer creates audit data.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | Rule
----------------------|--------------------------------------------------------
InventoryTransaction  | ALWAYS immutable: no UPDATE, no DELETE
OrderStateChange      | ALWAYS immutable: no UPDATE, no DELETE
Order                 | No DELETE; no UPDATE once status is SHIPPED/CANCELLED
OrderItem             | No DELETE; no UPDATE once the parent order is terminal
OrderException        | No DELETE

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect, text
from sqlalchemy.orm.attributes import get_history

from fulfillment_kernel.domain.statuses import OrderStatus
from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.invariants import KernelInvariant
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_TERMINAL = frozenset({OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value})


def _block(entity_type: str, entity_id: str, operation: str, reason: str, invariant: KernelInvariant, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": invariant.value,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


# ---------------------------------------------------------------------------
# Insert-only audit tables
# ---------------------------------------------------------------------------


def _check_inventory_transaction_update(mapper, connection, target):
    _block(
        "InventoryTransaction",
        str(target.id),
        "UPDATE",
        "Inventory transactions are append-only",
        KernelInvariant.AUDIT_APPEND_ONLY,
    )


def _check_inventory_transaction_delete(mapper, connection, target):
    _block(
        "InventoryTransaction",
        str(target.id),
        "DELETE",
        "Inventory transactions cannot be deleted",
        KernelInvariant.AUDIT_APPEND_ONLY,
    )


def _check_state_change_update(mapper, connection, target):
    _block(
        "OrderStateChange",
        str(target.id),
        "UPDATE",
        "Order state changes are append-only",
        KernelInvariant.AUDIT_APPEND_ONLY,
    )


def _check_state_change_delete(mapper, connection, target):
    _block(
        "OrderStateChange",
        str(target.id),
        "DELETE",
        "Order state changes cannot be deleted",
        KernelInvariant.AUDIT_APPEND_ONLY,
    )


# ---------------------------------------------------------------------------
# Orders and items
# ---------------------------------------------------------------------------


def _check_order_update(mapper, connection, target):
    """
    Block any change to an order that was already terminal.

    The transition INTO a terminal status is the cancelling/shipping
    operation itself and is allowed; the check looks at the status held
    before this flush began.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif status_history.added:
        return
    else:
        previous = target.status

    if previous not in _TERMINAL:
        return

    changed = _changed_fields(target)
    if changed:
        _block(
            "Order",
            target.order_id,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on {previous} order",
            KernelInvariant.TERMINAL_FROZEN,
            field=changed[0],
        )


def _check_order_delete(mapper, connection, target):
    _block(
        "Order",
        target.order_id,
        "DELETE",
        "Orders are never deleted; cancel instead",
        KernelInvariant.TERMINAL_FROZEN,
    )


def _check_order_item_update(mapper, connection, target):
    if not _changed_fields(target):
        return
    parent_status = connection.execute(
        text("SELECT status FROM orders WHERE id = :pk"),
        {"pk": str(target.order_pk)},
    ).scalar()
    if parent_status in _TERMINAL:
        _block(
            "OrderItem",
            target.order_item_id,
            "UPDATE",
            f"Cannot modify a line of a {parent_status} order",
            KernelInvariant.TERMINAL_FROZEN,
        )


def _check_order_item_delete(mapper, connection, target):
    _block(
        "OrderItem",
        target.order_item_id,
        "DELETE",
        "Order items are never deleted; cancel the line instead",
        KernelInvariant.TERMINAL_FROZEN,
    )


def _check_order_exception_delete(mapper, connection, target):
    _block(
        "OrderException",
        target.exception_id,
        "DELETE",
        "Order exceptions are audit records and cannot be deleted",
        KernelInvariant.AUDIT_APPEND_ONLY,
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listener_table():
    from fulfillment_kernel.models.inventory import InventoryTransaction
    from fulfillment_kernel.models.order import Order, OrderItem
    from fulfillment_kernel.models.order_exception import OrderException
    from fulfillment_kernel.models.order_state_change import OrderStateChange

    return [
        (InventoryTransaction, "before_update", _check_inventory_transaction_update),
        (InventoryTransaction, "before_delete", _check_inventory_transaction_delete),
        (OrderStateChange, "before_update", _check_state_change_update),
        (OrderStateChange, "before_delete", _check_state_change_delete),
        (Order, "before_update", _check_order_update),
        (Order, "before_delete", _check_order_delete),
        (OrderItem, "before_update", _check_order_item_update),
        (OrderItem, "before_delete", _check_order_item_delete),
        (OrderException, "before_delete", _check_order_exception_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable and before any writes.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules to
    verify the database-level layer.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
