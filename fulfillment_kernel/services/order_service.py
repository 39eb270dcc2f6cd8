"""
OrderService -- order intake, cancellation and backorder.

Responsibility:
    Creates orders in PENDING on behalf of the intake collaborator, cancels
    PENDING/PICKING orders with a full reservation release, and moves
    orders in and out of BACKORDER.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    FulfillmentOrchestrator; ``cancel_locked`` is also called by
    ExceptionResolutionService for the CANCEL_ORDER resolution.

Invariants enforced:
    terminal_frozen       -- a cancelled order is never modified again
                             (listener + trigger; this service makes every
                             line/task change before the final transition).
    Cancel releases all   -- after the release, the order's outstanding
                             reservation is re-read from the log and must
                             be zero.

Failure modes:
    - ValidationError: malformed lines, blank reason.
    - DuplicateOrderError: order id already exists.
    - OrderStatusConflictError: action not allowed in the current status.
    - InsufficientInventoryError: release_backorder with revalidation on
      and a line that cannot be covered.
    - InvariantViolationError: reservation left behind by a cancel.
"""

from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor, OrderDTO, OrderLineSpec
from fulfillment_kernel.domain.order_state_machine import (
    CANCELLABLE_STATES,
    TransitionContext,
    check_prerequisites,
    prerequisite_failures,
)
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import (
    INCOMPLETE_PICK_TASK_STATUSES,
    OrderPriority,
    OrderStatus,
    PickTaskStatus,
)
from fulfillment_kernel.exceptions import (
    DuplicateOrderError,
    InsufficientInventoryError,
    InvariantViolationError,
    ValidationError,
)
from fulfillment_kernel.invariants import KernelInvariant
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_access import lock_order, require_status
from fulfillment_kernel.services.state_change_logger import StateChangeLogger

logger = get_logger("services.order")


def _validate_lines(lines: Sequence[OrderLineSpec]) -> None:
    if not lines:
        raise ValidationError("lines", "an order needs at least one line")
    seen: set[str] = set()
    for index, line in enumerate(lines):
        field = f"lines[{index}]"
        if not line.order_item_id:
            raise ValidationError(field, "order_item_id is required")
        if line.order_item_id in seen:
            raise ValidationError(field, f"duplicate order_item_id {line.order_item_id!r}")
        seen.add(line.order_item_id)
        if not (line.sku and line.sku.strip()):
            raise ValidationError(field, "sku is required")
        if not (line.bin_location and line.bin_location.strip()):
            raise ValidationError(field, "bin_location is required")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError(field, f"quantity must be a positive integer, got {line.quantity!r}")


class OrderService(BaseService[Order]):
    """
    Order lifecycle operations outside the pick/pack flow.

    Non-goals:
        - Does NOT price, validate customers or talk to carriers.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger,
        state_changes: StateChangeLogger,
        exceptions: ExceptionService,
        clock: Clock | None = None,
        policy: FulfillmentPolicy | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._state_changes = state_changes
        self._exceptions = exceptions
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def create_order(
        self,
        order_id: str,
        lines: Sequence[OrderLineSpec],
        actor: Actor,
        priority: OrderPriority | str = OrderPriority.NORMAL,
        customer_name: str | None = None,
    ) -> OrderDTO:
        """
        Insert a new PENDING order with its lines.

        Postconditions:
            - One Order, one OrderItem per line (line_number from 1).
            - One OrderStateChange NULL -> PENDING.
        """
        if not (order_id and order_id.strip()):
            raise ValidationError("order_id", "order_id is required")
        try:
            priority = OrderPriority(priority)
        except ValueError:
            raise ValidationError("priority", f"unknown priority {priority!r}") from None
        _validate_lines(lines)

        existing = self.session.execute(
            select(Order.id).where(Order.order_id == order_id)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateOrderError(order_id)

        taken = self.session.execute(
            select(OrderItem.order_item_id).where(
                OrderItem.order_item_id.in_([line.order_item_id for line in lines])
            )
        ).scalars().all()
        if taken:
            raise ValidationError("lines", f"order_item_id already in use: {sorted(taken)}")

        order = Order(
            order_id=order_id,
            customer_name=customer_name,
            status=OrderStatus.PENDING,
            priority=priority,
            progress=0,
            received_at=self._clock.now(),
            created_by_id=actor.user_id,
        )
        order.items = [
            OrderItem(
                order_item_id=line.order_item_id,
                line_number=index,
                sku=line.sku,
                bin_location=line.bin_location,
                quantity=line.quantity,
                picked_quantity=0,
                verified_quantity=0,
                created_by_id=actor.user_id,
            )
            for index, line in enumerate(lines, start=1)
        ]

        # Two intakes of the same id race on uq_order_order_id
        savepoint = self.session.begin_nested()
        try:
            self.session.add(order)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateOrderError(order_id) from None

        self._state_changes.record_creation(order, actor)
        logger.info(
            "order_created",
            extra={
                "priority": priority.value,
                "lines": len(lines),
                "units": sum(line.quantity for line in lines),
            },
        )
        return OrderDTO.from_model(order)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        if not (reason and reason.strip()):
            raise ValidationError("reason", "a cancellation reason is required")
        order = lock_order(self.session, order_id)
        self.cancel_locked(order, actor, reason)
        return OrderDTO.from_model(order)

    def cancel_locked(
        self,
        order: Order,
        actor: Actor,
        reason: str,
        exclude_exception_id: str | None = None,
    ) -> None:
        """
        Cancel an order whose row the caller already holds.

        Releases every outstanding reservation, skips open pick tasks and
        cancels the order's other open exceptions before the terminal
        transition.  ``picker_id`` is kept for the record.
        """
        require_status(order, "cancel", CANCELLABLE_STATES)

        released = self._ledger.release_all(order.order_id, actor, reason=reason)

        remaining = sum(self._ledger.outstanding_reservations(order.order_id).values())
        failures = prerequisite_failures(
            OrderStatus.CANCELLED,
            TransitionContext(outstanding_reservation=remaining),
        )
        if failures:
            raise InvariantViolationError(
                KernelInvariant.CANCEL_RELEASES_ALL.value,
                "; ".join(failures),
                order_id=order.order_id,
                outstanding=remaining,
            )

        now = self._clock.now()
        for item in order.items:
            for task in item.pick_tasks:
                if task.status in INCOMPLETE_PICK_TASK_STATUSES:
                    task.status = PickTaskStatus.SKIPPED
                    task.completed_at = now
        self.session.flush()

        self._exceptions.cancel_open_for_order(
            order.order_id, actor, reason, exclude=exclude_exception_id
        )

        order.cancel_reason = reason
        order.cancelled_at = now
        self._state_changes.transition(order, OrderStatus.CANCELLED, actor, reason=reason)

        logger.info(
            "order_cancelled",
            extra={"reservations_released": len(released)},
        )

    # ------------------------------------------------------------------
    # Backorder
    # ------------------------------------------------------------------

    def backorder_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        order = lock_order(self.session, order_id)
        require_status(order, "backorder", [OrderStatus.PENDING])
        check_prerequisites(OrderStatus.BACKORDER, TransitionContext(reason=reason))

        order.backorder_reason = reason.strip()
        self._state_changes.transition(order, OrderStatus.BACKORDER, actor, reason=reason)
        logger.info("order_backordered", extra={"reason": order.backorder_reason})
        return OrderDTO.from_model(order)

    def release_backorder(self, order_id: str, actor: Actor) -> OrderDTO:
        """
        BACKORDER -> PENDING.

        With ``revalidate_on_backorder_release`` the active lines must be
        coverable right now; nothing is reserved either way.  Reservation
        happens at the next claim.
        """
        order = lock_order(self.session, order_id)
        require_status(order, "release_backorder", [OrderStatus.BACKORDER])

        if self._policy.revalidate_on_backorder_release:
            requested: dict[tuple[str, str], int] = defaultdict(int)
            for item in order.active_items:
                requested[(item.effective_sku, item.bin_location)] += item.quantity
            units = self._ledger.lock_units(requested)
            for (sku, bin_location), quantity in sorted(requested.items()):
                unit = units.get((sku, bin_location))
                available = unit.available if unit is not None else 0
                if available < quantity:
                    raise InsufficientInventoryError(
                        sku=sku,
                        bin_location=bin_location,
                        requested=quantity,
                        available=available,
                    )

        order.backorder_reason = None
        self._state_changes.transition(order, OrderStatus.PENDING, actor)
        logger.info("order_backorder_released")
        return OrderDTO.from_model(order)
