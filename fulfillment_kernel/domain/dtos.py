"""
Data Transfer Objects -- immutable value objects crossing the kernel boundary.

Responsibility:
    Frozen dataclasses returned by services, selectors and the orchestrator.
    Callers never receive live ORM instances, so nothing outside the kernel
    can mutate persistent state by accident.

Architecture position:
    Kernel > Domain -- pure data, ZERO I/O.  The ``from_model`` builders
    read attributes only; they do not import the ORM classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from fulfillment_kernel.domain.statuses import (
    BackorderLineStatus,
    ExceptionResolution,
    ExceptionStatus,
    ExceptionType,
    OrderItemStatus,
    OrderPriority,
    OrderStatus,
    PickTaskStatus,
    TransactionType,
)


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation (supplied by auth)."""

    user_id: str
    role: str

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Actor.user_id is required")


@dataclass(frozen=True)
class OrderLineSpec:
    """One requested line of a new order."""

    order_item_id: str
    sku: str
    bin_location: str
    quantity: int


@dataclass(frozen=True)
class OrderItemDTO:
    order_item_id: str
    line_number: int
    sku: str
    substitute_sku: str | None
    bin_location: str
    quantity: int
    picked_quantity: int
    verified_quantity: int
    status: OrderItemStatus
    skip_reason: str | None = None

    @property
    def effective_sku(self) -> str:
        return self.substitute_sku or self.sku

    @classmethod
    def from_model(cls, item) -> OrderItemDTO:
        return cls(
            order_item_id=item.order_item_id,
            line_number=item.line_number,
            sku=item.sku,
            substitute_sku=item.substitute_sku,
            bin_location=item.bin_location,
            quantity=item.quantity,
            picked_quantity=item.picked_quantity,
            verified_quantity=item.verified_quantity,
            status=OrderItemStatus(item.status),
            skip_reason=item.skip_reason,
        )


@dataclass(frozen=True)
class PickTaskDTO:
    """The picker's current instruction for one line."""

    order_id: str
    order_item_id: str
    picker_id: str
    sku: str
    bin_location: str
    quantity: int
    picked_quantity: int
    status: PickTaskStatus
    skip_reason: str | None = None

    @property
    def remaining(self) -> int:
        return self.quantity - self.picked_quantity

    @classmethod
    def from_model(cls, order_id: str, item, task) -> PickTaskDTO:
        return cls(
            order_id=order_id,
            order_item_id=item.order_item_id,
            picker_id=task.picker_id,
            sku=task.sku,
            bin_location=task.bin_location,
            quantity=task.quantity,
            picked_quantity=task.picked_quantity,
            status=PickTaskStatus(task.status),
            skip_reason=task.skip_reason,
        )


@dataclass(frozen=True)
class OrderDTO:
    order_id: str
    status: OrderStatus
    priority: OrderPriority
    picker_id: str | None
    packer_id: str | None
    progress: int
    received_at: datetime
    items: tuple[OrderItemDTO, ...] = ()
    customer_name: str | None = None
    claimed_at: datetime | None = None
    picked_at: datetime | None = None
    packing_started_at: datetime | None = None
    packed_at: datetime | None = None
    shipped_at: datetime | None = None
    cancelled_at: datetime | None = None
    shipping_method: str | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    backorder_reason: str | None = None
    cancel_reason: str | None = None

    def item(self, order_item_id: str) -> OrderItemDTO:
        for item in self.items:
            if item.order_item_id == order_item_id:
                return item
        raise KeyError(order_item_id)

    @classmethod
    def from_model(cls, order) -> OrderDTO:
        return cls(
            order_id=order.order_id,
            status=OrderStatus(order.status),
            priority=OrderPriority(order.priority),
            picker_id=order.picker_id,
            packer_id=order.packer_id,
            progress=order.progress,
            received_at=order.received_at,
            items=tuple(OrderItemDTO.from_model(i) for i in order.items),
            customer_name=order.customer_name,
            claimed_at=order.claimed_at,
            picked_at=order.picked_at,
            packing_started_at=order.packing_started_at,
            packed_at=order.packed_at,
            shipped_at=order.shipped_at,
            cancelled_at=order.cancelled_at,
            shipping_method=order.shipping_method,
            carrier=order.carrier,
            tracking_number=order.tracking_number,
            backorder_reason=order.backorder_reason,
            cancel_reason=order.cancel_reason,
        )


@dataclass(frozen=True)
class InventorySnapshot:
    sku: str
    bin_location: str
    quantity_on_hand: int
    quantity_reserved: int

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    @classmethod
    def from_model(cls, unit) -> InventorySnapshot:
        return cls(
            sku=unit.sku,
            bin_location=unit.bin_location,
            quantity_on_hand=unit.quantity_on_hand,
            quantity_reserved=unit.quantity_reserved,
        )


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of one inventory ledger call: the new counters and the log row."""

    transaction_type: TransactionType
    sku: str
    bin_location: str
    quantity: int
    order_id: str | None
    unit: InventorySnapshot


@dataclass(frozen=True)
class InventoryTransactionDTO:
    transaction_type: TransactionType
    sku: str
    bin_location: str
    quantity: int
    order_id: str | None
    actor_id: str
    reason: str | None
    occurred_at: datetime

    @classmethod
    def from_model(cls, tx) -> InventoryTransactionDTO:
        return cls(
            transaction_type=TransactionType(tx.transaction_type),
            sku=tx.sku,
            bin_location=tx.bin_location,
            quantity=tx.quantity,
            order_id=tx.order_id,
            actor_id=tx.actor_id,
            reason=tx.reason,
            occurred_at=tx.occurred_at,
        )


@dataclass(frozen=True)
class OrderStateChangeDTO:
    order_id: str
    sequence: int
    from_status: OrderStatus | None
    to_status: OrderStatus
    actor_id: str
    actor_role: str | None
    reason: str | None
    occurred_at: datetime

    @classmethod
    def from_model(cls, change) -> OrderStateChangeDTO:
        return cls(
            order_id=change.order_id,
            sequence=change.sequence,
            from_status=OrderStatus(change.from_status) if change.from_status else None,
            to_status=OrderStatus(change.to_status),
            actor_id=change.actor_id,
            actor_role=change.actor_role,
            reason=change.reason,
            occurred_at=change.occurred_at,
        )


@dataclass(frozen=True)
class OrderExceptionDTO:
    exception_id: str
    order_id: str
    order_item_id: str | None
    sku: str | None
    exception_type: ExceptionType
    status: ExceptionStatus
    resolution: ExceptionResolution | None
    quantity_expected: int
    quantity_actual: int
    quantity_short: int
    reason: str
    reported_by: str
    reported_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    substitute_sku: str | None = None

    @classmethod
    def from_model(cls, exc) -> OrderExceptionDTO:
        return cls(
            exception_id=exc.exception_id,
            order_id=exc.order_id,
            order_item_id=exc.order_item_id,
            sku=exc.sku,
            exception_type=ExceptionType(exc.exception_type),
            status=ExceptionStatus(exc.status),
            resolution=ExceptionResolution(exc.resolution) if exc.resolution else None,
            quantity_expected=exc.quantity_expected,
            quantity_actual=exc.quantity_actual,
            quantity_short=exc.quantity_short,
            reason=exc.reason,
            reported_by=exc.reported_by,
            reported_at=exc.reported_at,
            reviewed_by=exc.reviewed_by,
            reviewed_at=exc.reviewed_at,
            review_notes=exc.review_notes,
            resolved_by=exc.resolved_by,
            resolved_at=exc.resolved_at,
            resolution_notes=exc.resolution_notes,
            substitute_sku=exc.substitute_sku,
        )


@dataclass(frozen=True)
class BackorderLineDTO:
    order_id: str
    order_item_id: str
    exception_id: str
    sku: str
    bin_location: str
    quantity: int
    status: BackorderLineStatus

    @classmethod
    def from_model(cls, line) -> BackorderLineDTO:
        return cls(
            order_id=line.order_id,
            order_item_id=line.order_item_id,
            exception_id=line.exception_id,
            sku=line.sku,
            bin_location=line.bin_location,
            quantity=line.quantity,
            status=BackorderLineStatus(line.status),
        )


class PickOutcome(str, Enum):
    """What a record_pick call did."""

    RECORDED = "recorded"
    BIN_MISMATCH = "bin_mismatch"


@dataclass(frozen=True)
class PickResult:
    outcome: PickOutcome
    order: OrderDTO
    exception: OrderExceptionDTO | None = None

    @property
    def order_completed_picking(self) -> bool:
        return self.order.status == OrderStatus.PICKED


@dataclass(frozen=True)
class PackResult:
    order: OrderDTO
    exception: OrderExceptionDTO | None = None

    @property
    def order_completed_packing(self) -> bool:
        return self.order.status == OrderStatus.PACKED


@dataclass(frozen=True)
class ResolutionResult:
    """A resolved exception plus whatever its compensation touched."""

    exception: OrderExceptionDTO
    order: OrderDTO
    ledger_effects: tuple[LedgerResult, ...] = ()
    backorder_line: BackorderLineDTO | None = None


@dataclass(frozen=True)
class ExceptionSummary:
    """Counts of exceptions by status and by type."""

    total: int
    by_status: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
