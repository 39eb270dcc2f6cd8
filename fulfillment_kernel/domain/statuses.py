"""
Closed enumerations for the fulfillment domain.

Responsibility:
    Single definition of every status/type vocabulary used by the kernel:
    order lifecycle, line and pick-task progress, ledger transaction types,
    and the exception sub-flow.  Models persist these as strings; the state
    machine matches on them exhaustively.

Architecture position:
    Kernel > Domain -- pure values, ZERO I/O.  Imported by models/,
    services/, selectors/ and the state machine.
"""

from enum import Enum, unique


@unique
class OrderStatus(str, Enum):
    """Order lifecycle status.

    Contract: PENDING is initial; SHIPPED and CANCELLED are terminal.
    Legal edges live in ``domain.order_state_machine.TRANSITIONS``.
    """

    PENDING = "PENDING"
    PICKING = "PICKING"
    PICKED = "PICKED"
    PACKING = "PACKING"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"
    BACKORDER = "BACKORDER"


@unique
class OrderPriority(str, Enum):
    """Queue priority; ``rank`` orders the pick queue (higher first)."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    OrderPriority.LOW: 0,
    OrderPriority.NORMAL: 1,
    OrderPriority.HIGH: 2,
    OrderPriority.URGENT: 3,
}


@unique
class OrderItemStatus(str, Enum):
    """Per-line progress.  CANCELLED and BACKORDERED lines are inactive."""

    PENDING = "PENDING"
    PARTIAL_PICKED = "PARTIAL_PICKED"
    FULLY_PICKED = "FULLY_PICKED"
    CANCELLED = "CANCELLED"
    BACKORDERED = "BACKORDERED"


INACTIVE_ITEM_STATUSES: frozenset[OrderItemStatus] = frozenset(
    {OrderItemStatus.CANCELLED, OrderItemStatus.BACKORDERED}
)


@unique
class PickTaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


INCOMPLETE_PICK_TASK_STATUSES: frozenset[PickTaskStatus] = frozenset(
    {PickTaskStatus.PENDING, PickTaskStatus.IN_PROGRESS}
)


@unique
class TransactionType(str, Enum):
    """Inventory ledger transaction types.

    The signed quantity of a transaction is the change to the counter the
    type moves: RESERVATION +q and CANCELLATION -q (reserved), DEDUCTION -q
    (on-hand and reserved), ADJUSTMENT +/-q and RECEIPT +q (on-hand).
    """

    RESERVATION = "RESERVATION"
    DEDUCTION = "DEDUCTION"
    CANCELLATION = "CANCELLATION"
    ADJUSTMENT = "ADJUSTMENT"
    RECEIPT = "RECEIPT"


# Types whose quantities sum to an order's outstanding reservation.
RESERVATION_TRANSACTION_TYPES: frozenset[TransactionType] = frozenset(
    {
        TransactionType.RESERVATION,
        TransactionType.CANCELLATION,
        TransactionType.DEDUCTION,
    }
)


@unique
class ExceptionType(str, Enum):
    UNCLAIM = "UNCLAIM"
    UNDO_PICK = "UNDO_PICK"
    SHORT_PICK = "SHORT_PICK"
    SHORT_PICK_BACKORDER = "SHORT_PICK_BACKORDER"
    DAMAGE = "DAMAGE"
    DEFECTIVE = "DEFECTIVE"
    WRONG_ITEM = "WRONG_ITEM"
    SUBSTITUTION = "SUBSTITUTION"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    BIN_MISMATCH = "BIN_MISMATCH"
    BARCODE_MISMATCH = "BARCODE_MISMATCH"
    EXPIRED = "EXPIRED"
    OTHER = "OTHER"


@unique
class ExceptionStatus(str, Enum):
    """OrderException lifecycle.  RESOLVED and CANCELLED are terminal."""

    OPEN = "OPEN"
    REVIEWING = "REVIEWING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


@unique
class ExceptionResolution(str, Enum):
    BACKORDER = "BACKORDER"
    SUBSTITUTE = "SUBSTITUTE"
    CANCEL_ITEM = "CANCEL_ITEM"
    CANCEL_ORDER = "CANCEL_ORDER"
    ADJUST_QUANTITY = "ADJUST_QUANTITY"
    RETURN_TO_STOCK = "RETURN_TO_STOCK"
    WRITE_OFF = "WRITE_OFF"
    TRANSFER_BIN = "TRANSFER_BIN"
    CONTACT_CUSTOMER = "CONTACT_CUSTOMER"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


@unique
class BackorderLineStatus(str, Enum):
    OPEN = "OPEN"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


@unique
class WorkerRole(str, Enum):
    PICKER = "PICKER"
    PACKER = "PACKER"
