"""
AllocationService -- claim admission and stock reservation.

Responsibility:
    Moves an order PENDING -> PICKING for one picker, reserving stock for
    every active line, and the compensating PICKING -> PENDING (unclaim)
    that gives the stock back.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    FulfillmentOrchestrator.claim_order / unclaim_order.

Invariants enforced:
    worker_assignment   -- a PICKING order always carries its picker.
    reservation_bounded -- every reservation goes through InventoryLedger.
    Picker cap          -- counted while holding the picker's WorkerLock.
    All-or-nothing      -- line reservations run inside a SAVEPOINT; a
                           failure leaves no reservation from this claim.

Failure modes:
    - OrderNotFoundError: unknown order id.
    - OrderAlreadyClaimedError: another picker holds the order.
    - OrderStatusConflictError: order not PENDING.
    - PrerequisiteFailedError: picker missing or inactive, no active lines.
    - PickerCapacityExceededError: picker at cap.
    - InsufficientInventoryError: a line's (sku, bin) is short.

Audit relevance:
    A claim appends one OrderStateChange and one RESERVATION per reserved
    (sku, bin).  An unclaim appends CANCELLATION rows, one
    OrderStateChange, and an UNCLAIM OrderException carrying the reason.
"""

from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor, OrderDTO
from fulfillment_kernel.domain.order_state_machine import (
    LineAvailability,
    TransitionContext,
    check_prerequisites,
)
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import (
    ExceptionType,
    OrderStatus,
    WorkerRole,
)
from fulfillment_kernel.domain.workers import WorkerDirectory
from fulfillment_kernel.exceptions import (
    OrderAlreadyClaimedError,
    PrerequisiteFailedError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_access import lock_order, require_status
from fulfillment_kernel.services.order_progress import create_pick_task
from fulfillment_kernel.services.state_change_logger import StateChangeLogger
from fulfillment_kernel.services.worker_lock_service import WorkerLockService

logger = get_logger("services.allocation")


class AllocationService(BaseService[Order]):
    """
    Claim and unclaim of orders for picking.

    Contract:
        ``claim_order`` either leaves the order PICKING with every active
        line reserved, or raises with the order PENDING and no reservation
        made by the call.

    Non-goals:
        - Does NOT commit; FulfillmentOrchestrator does.
        - Does NOT time out claims.
        - Does NOT check that the unclaiming actor is the picker; that is an
          authorization decision made before the kernel is called.
    """

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger,
        state_changes: StateChangeLogger,
        exceptions: ExceptionService,
        worker_locks: WorkerLockService,
        workers: WorkerDirectory,
        clock: Clock | None = None,
        policy: FulfillmentPolicy | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._state_changes = state_changes
        self._exceptions = exceptions
        self._worker_locks = worker_locks
        self._workers = workers
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY

    def count_active_orders(self, picker_id: str) -> int:
        """Orders the picker currently holds in PICKING."""
        return self.session.execute(
            select(func.count(Order.id)).where(
                Order.picker_id == picker_id,
                Order.status == OrderStatus.PICKING.value,
            )
        ).scalar_one()

    def claim_order(self, order_id: str, picker_id: str, actor: Actor) -> OrderDTO:
        """
        Claim ``order_id`` for ``picker_id`` and reserve its stock.

        Lock order: Order row, then the picker's WorkerLock, then the
        InventoryUnits in sorted (sku, bin) order.
        """
        order = lock_order(self.session, order_id)

        if order.picker_id and OrderStatus(order.status) in (OrderStatus.PICKING, OrderStatus.PICKED):
            raise OrderAlreadyClaimedError(order_id, held_by=order.picker_id)
        require_status(order, "claim", [OrderStatus.PENDING])

        active_items = order.active_items
        if not active_items:
            raise PrerequisiteFailedError(OrderStatus.PICKING.value, ["order has no active lines"])

        picker_active = bool(picker_id) and self._workers.is_active(picker_id, WorkerRole.PICKER)
        active_orders = 0
        if picker_id:
            self._worker_locks.acquire(picker_id, WorkerRole.PICKER)
            active_orders = self.count_active_orders(picker_id)

        requested: dict[tuple[str, str], int] = defaultdict(int)
        for item in active_items:
            requested[(item.effective_sku, item.bin_location)] += item.quantity
        units = self._ledger.lock_units(requested) if picker_active else {}

        ctx = TransitionContext(
            picker_id=picker_id,
            picker_active=picker_active,
            picker_active_orders=active_orders,
            max_orders_per_picker=self._policy.max_orders_per_picker,
            line_availability=tuple(
                LineAvailability(
                    sku=sku,
                    bin_location=bin_location,
                    requested=quantity,
                    available=units[(sku, bin_location)].available
                    if (sku, bin_location) in units
                    else 0,
                )
                for (sku, bin_location), quantity in sorted(requested.items())
            ),
        )
        check_prerequisites(OrderStatus.PICKING, ctx)

        savepoint = self.session.begin_nested()
        try:
            for (sku, bin_location), quantity in sorted(requested.items()):
                self._ledger.reserve(
                    sku, bin_location, quantity, order_id, actor,
                    reason=f"claim by {picker_id}",
                )
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.warning(
                "claim_reservations_rolled_back",
                extra={"picker_id": picker_id},
            )
            raise

        order.picker_id = picker_id
        order.claimed_at = self._clock.now()
        order.progress = 0
        for item in active_items:
            create_pick_task(item, picker_id)
        self._state_changes.transition(order, OrderStatus.PICKING, actor)

        logger.info(
            "order_claimed",
            extra={
                "picker_id": picker_id,
                "picker_active_orders": active_orders + 1,
                "lines": len(active_items),
            },
        )
        return OrderDTO.from_model(order)

    def unclaim_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        """
        Return a PICKING order to PENDING and release its stock.

        Picked quantities are reset and pick tasks dropped; they are
        recreated at the next claim.
        """
        if not (reason and reason.strip()):
            raise ValidationError("reason", "an unclaim reason is required")

        order = lock_order(self.session, order_id)
        require_status(order, "unclaim", [OrderStatus.PICKING])
        previous_picker = order.picker_id

        released = self._ledger.release_all(order_id, actor, reason=reason)

        for item in order.items:
            item.picked_quantity = 0
            item.verified_quantity = 0
            item.refresh_pick_status()
            item.pick_tasks.clear()
            item.updated_by_id = actor.user_id

        order.picker_id = None
        order.claimed_at = None
        order.progress = 0
        self._state_changes.transition(
            order, OrderStatus.PENDING, actor, reason=reason, compensating=True
        )
        self._exceptions.record_resolved(
            order, ExceptionType.UNCLAIM, reason, actor,
        )

        logger.info(
            "order_unclaimed",
            extra={
                "picker_id": previous_picker,
                "reservations_released": len(released),
            },
        )
        return OrderDTO.from_model(order)
