"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The calling layer (HTTP handlers, batch tools, supervisors' consoles) must
react differently to a bad request, a lost race, a stock shortfall and a
corrupted invariant.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        orchestrator.claim_order(order_id, picker_id, actor)
    except Exception as e:
        if "already claimed" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        orchestrator.claim_order(order_id, picker_id, actor)
    except OrderAlreadyClaimedError as e:
        api_response(code=e.code, held_by=e.held_by)
    except InsufficientInventoryError as e:
        open_exception(sku=e.sku, short=e.requested - e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- OrderItemNotFoundError
    |   +-- InventoryUnitNotFoundError
    |   +-- OrderExceptionNotFoundError
    |
    +-- ConflictError
    |   +-- OrderAlreadyClaimedError
    |   +-- OrderStatusConflictError
    |   +-- OrderItemInactiveError
    |   +-- ExceptionClosedError
    |   +-- DuplicateOrderError
    |
    +-- StateMachineError
    |   +-- InvalidTransitionError
    |   +-- PrerequisiteFailedError
    |       +-- PickerCapacityExceededError
    |
    +-- InsufficientInventoryError
    |
    +-- InvariantViolationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------------
Validation   | VALIDATION_ERROR            | Non-positive quantity, missing field
-------------|-----------------------------|-----------------------------------------
Not found    | ORDER_NOT_FOUND             | Unknown order id
             | ORDER_ITEM_NOT_FOUND        | Unknown line item on an order
             | INVENTORY_UNIT_NOT_FOUND    | No stock record for (sku, bin)
             | ORDER_EXCEPTION_NOT_FOUND   | Unknown exception id
-------------|-----------------------------|-----------------------------------------
Conflict     | ORDER_ALREADY_CLAIMED       | Another picker/packer holds the order
             | ORDER_STATUS_CONFLICT       | Order not in the status the action needs
             | DUPLICATE_ORDER             | Order id already exists
             | ORDER_ITEM_INACTIVE         | Pick/pack on a cancelled or backordered line
             | EXCEPTION_CLOSED            | Resolve/review of a closed exception
-------------|-----------------------------|-----------------------------------------
State        | INVALID_TRANSITION          | Edge not in the transition table
             | PREREQUISITE_FAILED         | Edge legal, prerequisites not met
             | PICKER_CAPACITY_EXCEEDED    | Picker at the active-order cap
-------------|-----------------------------|-----------------------------------------
Inventory    | INSUFFICIENT_INVENTORY      | available < requested on reserve
-------------|-----------------------------|-----------------------------------------
Integrity    | INVARIANT_VIOLATION         | Mutation would break a data invariant
             | IMMUTABILITY_VIOLATION      | Update/delete of an audit record

===============================================================================
RECOVERABILITY
===============================================================================

ValidationError, NotFoundError, ConflictError, StateMachineError and
InsufficientInventoryError are expected business outcomes: the caller
re-fetches, retries or informs the user.  InvariantViolationError and
ImmutabilityViolationError indicate a bug or external corruption: the
enclosing transaction is rolled back in full and the error is logged at
ERROR level with its structured fields.
"""

from collections.abc import Iterable


class FulfillmentKernelError(Exception):
    """Base exception for all fulfillment kernel errors."""

    code: str = "FULFILLMENT_KERNEL_ERROR"


# Validation


class ValidationError(FulfillmentKernelError):
    """Malformed input: non-positive quantity, missing required field."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid {field}: {message}")


# Not-found errors


class NotFoundError(FulfillmentKernelError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Order id does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderItemNotFoundError(NotFoundError):
    """Line item does not exist on the given order."""

    code: str = "ORDER_ITEM_NOT_FOUND"

    def __init__(self, order_id: str, order_item_id: str):
        self.order_id = order_id
        self.order_item_id = order_item_id
        super().__init__(
            f"Order item {order_item_id} not found on order {order_id}"
        )


class InventoryUnitNotFoundError(NotFoundError):
    """No inventory record exists for the (sku, bin) pair."""

    code: str = "INVENTORY_UNIT_NOT_FOUND"

    def __init__(self, sku: str, bin_location: str):
        self.sku = sku
        self.bin_location = bin_location
        super().__init__(f"No inventory for SKU {sku} in bin {bin_location}")


class OrderExceptionNotFoundError(NotFoundError):
    """Exception id does not exist."""

    code: str = "ORDER_EXCEPTION_NOT_FOUND"

    def __init__(self, exception_id: str):
        self.exception_id = exception_id
        super().__init__(f"Order exception not found: {exception_id}")


# Conflicts


class ConflictError(FulfillmentKernelError):
    """A state precondition was violated (wrong status, double claim)."""

    code: str = "CONFLICT"


class OrderAlreadyClaimedError(ConflictError):
    """The order is already held by another worker."""

    code: str = "ORDER_ALREADY_CLAIMED"

    def __init__(self, order_id: str, held_by: str | None, role: str = "picker"):
        self.order_id = order_id
        self.held_by = held_by
        self.role = role
        super().__init__(
            f"Order {order_id} is already claimed by {role} {held_by}"
        )


class OrderStatusConflictError(ConflictError):
    """The order is not in a status that permits the requested action."""

    code: str = "ORDER_STATUS_CONFLICT"

    def __init__(self, order_id: str, current_status: str, action: str, expected: Iterable[str]):
        self.order_id = order_id
        self.current_status = current_status
        self.action = action
        self.expected = sorted(str(s) for s in expected)
        super().__init__(
            f"Cannot {action} order {order_id} in status {current_status} "
            f"(expected one of: {', '.join(self.expected)})"
        )


class OrderItemInactiveError(ConflictError):
    """The line is CANCELLED or BACKORDERED and accepts no pick or pack."""

    code: str = "ORDER_ITEM_INACTIVE"

    def __init__(self, order_id: str, order_item_id: str, status: str):
        self.order_id = order_id
        self.order_item_id = order_item_id
        self.status = status
        super().__init__(
            f"Order item {order_item_id} on order {order_id} is {status}"
        )


class ExceptionClosedError(ConflictError):
    """The order exception is already RESOLVED or CANCELLED."""

    code: str = "EXCEPTION_CLOSED"

    def __init__(self, exception_id: str, status: str):
        self.exception_id = exception_id
        self.status = status
        super().__init__(f"Order exception {exception_id} is already {status}")


class DuplicateOrderError(ConflictError):
    """An order with the same id already exists."""

    code: str = "DUPLICATE_ORDER"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order already exists: {order_id}")


# State machine


class StateMachineError(FulfillmentKernelError):
    """Base exception for lifecycle errors."""

    code: str = "STATE_MACHINE_ERROR"


class InvalidTransitionError(StateMachineError):
    """
    The requested edge is not part of the transition table.

    Carries the attempted edge and the legal alternatives so the caller can
    present them.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        allowed: Iterable[str],
        entity_type: str = "Order",
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = sorted(str(s) for s in allowed)
        self.entity_type = entity_type
        alternatives = ", ".join(self.allowed) or "none (terminal state)"
        super().__init__(
            f"Invalid {entity_type} transition {from_status} -> {to_status}; "
            f"allowed: {alternatives}"
        )


class PrerequisiteFailedError(StateMachineError):
    """The edge is legal but one or more of its prerequisites failed."""

    code: str = "PREREQUISITE_FAILED"

    def __init__(self, to_status: str, failures: Iterable[str]):
        self.to_status = to_status
        self.failures = list(failures)
        super().__init__(
            f"Prerequisites for {to_status} not met: {'; '.join(self.failures)}"
        )


class PickerCapacityExceededError(PrerequisiteFailedError):
    """The picker already holds the configured maximum of active orders."""

    code: str = "PICKER_CAPACITY_EXCEEDED"

    def __init__(self, picker_id: str, active_count: int, max_active: int):
        self.picker_id = picker_id
        self.active_count = active_count
        self.max_active = max_active
        super().__init__(
            "PICKING",
            [
                f"picker {picker_id} has {active_count} active orders "
                f"(max {max_active})"
            ],
        )


# Inventory


class InsufficientInventoryError(FulfillmentKernelError):
    """Available stock is lower than the requested reservation."""

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(self, sku: str, bin_location: str, requested: int, available: int):
        self.sku = sku
        self.bin_location = bin_location
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient inventory for SKU {sku} in bin {bin_location}: "
            f"requested {requested}, available {available}"
        )


# Integrity


class InvariantViolationError(FulfillmentKernelError):
    """
    A requested mutation would break a data-model invariant.

    Fatal: the enclosing transaction is rolled back and the error is logged
    with full context.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, message: str, **context):
        self.invariant = invariant
        self.context = context
        super().__init__(f"Invariant {invariant} violated: {message}")


class ImmutabilityViolationError(FulfillmentKernelError):
    """
    Attempted to modify or delete an immutable record.

    InventoryTransaction and OrderStateChange rows are insert-only; orders,
    items and exceptions are never deleted; terminal orders are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
