"""ORM models for the fulfillment kernel."""

from fulfillment_kernel.models.inventory import InventoryTransaction, InventoryUnit
from fulfillment_kernel.models.order import (
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    PickTask,
)
from fulfillment_kernel.models.order_exception import BackorderLine, OrderException
from fulfillment_kernel.models.order_state_change import OrderStateChange
from fulfillment_kernel.models.worker_lock import WorkerLock

__all__ = [
    "Order",
    "OrderItem",
    "PickTask",
    "TERMINAL_ORDER_STATUSES",
    "InventoryUnit",
    "InventoryTransaction",
    "OrderStateChange",
    "OrderException",
    "BackorderLine",
    "WorkerLock",
    "import_all_models",
]


def import_all_models() -> list[type]:
    """Return every mapped class so Base.metadata is complete before DDL."""
    return [
        Order,
        OrderItem,
        PickTask,
        InventoryUnit,
        InventoryTransaction,
        OrderStateChange,
        OrderException,
        BackorderLine,
        WorkerLock,
    ]
