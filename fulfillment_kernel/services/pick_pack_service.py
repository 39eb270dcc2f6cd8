"""
PickPackService -- execution of picking, packing and shipping.

Responsibility:
    Records picks and pack verifications against order lines, derives line
    status and stage progress, and drives the forward transitions
    PICKING -> PICKED -> PACKING -> PACKED -> SHIPPED through the state
    machine.  Shipping consumes the order's reservations via the ledger.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    FulfillmentOrchestrator and, for ``maybe_complete_picking``, by
    ExceptionResolutionService after a compensation.

Invariants enforced:
    pick_bounded      -- 0 <= picked <= ordered, 0 <= verified <= picked,
                         checked before any write.
    progress_bounded  -- progress is recomputed from line quantities and
                         is always within [0, 100].
    worker_assignment -- a PACKING order always carries its packer.

Failure modes:
    - OrderStatusConflictError: action not allowed in the order's status.
    - OrderItemInactiveError: pick or pack on a cancelled/backordered line.
    - OrderAlreadyClaimedError: another packer holds the order.
    - ValidationError: non-positive or out-of-bounds quantity, blank reason.
    - PrerequisiteFailedError: packer missing/inactive/at cap, shipping
      method or carrier missing.

Audit relevance:
    A bin mismatch is recorded as a BIN_MISMATCH OrderException instead of
    being applied.  Undoing a pick leaves an UNDO_PICK record.  A line the
    packer skips gets an OPEN exception for a supervisor.  Shipping appends
    one DEDUCTION per reserved (sku, bin).
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    Actor,
    LedgerResult,
    OrderDTO,
    OrderExceptionDTO,
    PackResult,
    PickOutcome,
    PickResult,
)
from fulfillment_kernel.domain.order_state_machine import (
    TransitionContext,
    check_prerequisites,
)
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import (
    INCOMPLETE_PICK_TASK_STATUSES,
    ExceptionType,
    OrderStatus,
    PickTaskStatus,
    WorkerRole,
)
from fulfillment_kernel.domain.workers import WorkerDirectory
from fulfillment_kernel.exceptions import (
    OrderAlreadyClaimedError,
    OrderItemInactiveError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_access import lock_order, require_item, require_status
from fulfillment_kernel.services.order_progress import (
    open_pick_task_count,
    packing_progress,
    picking_progress,
    sync_pick_task,
    take_back_picks,
)
from fulfillment_kernel.services.state_change_logger import StateChangeLogger
from fulfillment_kernel.services.worker_lock_service import WorkerLockService

logger = get_logger("services.pick_pack")


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")


def _require_active(order: Order, item: OrderItem) -> None:
    if not item.is_active:
        raise OrderItemInactiveError(order.order_id, item.order_item_id, str(item.status))


class PickPackService(BaseService[Order]):
    """
    Pick, pack and ship operations on a single order.

    Contract:
        Every public method locks the order row first and returns frozen
        DTOs.  Flush only.
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

    # ------------------------------------------------------------------
    # Picking
    # ------------------------------------------------------------------

    def record_pick(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        bin_location: str,
        actor: Actor,
    ) -> PickResult:
        """
        Record ``quantity`` units of a line picked from ``bin_location``.

        A scan from the wrong bin is not an error: it is logged as a
        BIN_MISMATCH exception and the pick is not applied.
        """
        order = lock_order(self.session, order_id)
        require_status(order, "record_pick", [OrderStatus.PICKING])
        item = require_item(order, order_item_id)
        _require_positive(quantity)
        if item.picked_quantity + quantity > item.quantity:
            raise ValidationError(
                "quantity",
                f"picking {quantity} would exceed ordered {item.quantity} "
                f"(already picked {item.picked_quantity})",
            )
        _require_active(order, item)

        if bin_location != item.bin_location:
            exc = self._exceptions.record_open(
                order,
                item,
                ExceptionType.BIN_MISMATCH,
                quantity_expected=quantity,
                quantity_actual=0,
                reason=f"scanned bin {bin_location}, line expects {item.bin_location}",
                actor=actor,
            )
            logger.warning(
                "pick_bin_mismatch",
                extra={
                    "order_item_id": order_item_id,
                    "expected_bin": item.bin_location,
                    "scanned_bin": bin_location,
                },
            )
            return PickResult(
                outcome=PickOutcome.BIN_MISMATCH,
                order=OrderDTO.from_model(order),
                exception=OrderExceptionDTO.from_model(exc),
            )

        item.picked_quantity += quantity
        item.refresh_pick_status()
        item.updated_by_id = actor.user_id
        sync_pick_task(item, self._clock.now())
        order.progress = picking_progress(order)
        order.updated_by_id = actor.user_id
        self.session.flush()

        logger.info(
            "pick_recorded",
            extra={
                "order_item_id": order_item_id,
                "quantity": quantity,
                "picked_quantity": item.picked_quantity,
                "progress": order.progress,
            },
        )

        self.maybe_complete_picking(order, actor)
        return PickResult(outcome=PickOutcome.RECORDED, order=OrderDTO.from_model(order))

    def undo_pick(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
        reason: str,
    ) -> OrderDTO:
        """
        Put ``quantity`` picked units back to "reserved, not picked".

        The units stay reserved for the order until it ships or is
        cancelled.  Units picked at an earlier (sku, bin) of a moved line
        have their reservation moved to the line's current key.
        """
        if not (reason and reason.strip()):
            raise ValidationError("reason", "an undo reason is required")
        order = lock_order(self.session, order_id)
        require_status(order, "undo_pick", [OrderStatus.PICKING])
        item = require_item(order, order_item_id)
        _require_positive(quantity)
        if quantity > item.picked_quantity:
            raise ValidationError(
                "quantity",
                f"cannot undo {quantity}; only {item.picked_quantity} picked",
            )

        previous = item.picked_quantity
        self.return_picks(order, item, quantity, actor, reason=f"undo pick: {reason}")
        order.progress = picking_progress(order)
        order.updated_by_id = actor.user_id
        self.session.flush()

        self._exceptions.record_resolved(
            order,
            ExceptionType.UNDO_PICK,
            reason,
            actor,
            item=item,
            quantity_expected=previous,
            quantity_actual=item.picked_quantity,
        )
        logger.info(
            "pick_undone",
            extra={
                "order_item_id": order_item_id,
                "quantity": quantity,
                "picked_quantity": item.picked_quantity,
                "progress": order.progress,
            },
        )
        return OrderDTO.from_model(order)

    def skip_pick_task(
        self,
        order_id: str,
        order_item_id: str,
        reason: str,
        actor: Actor,
    ) -> OrderDTO:
        """
        Set a line's open pick task aside; the next-task queue passes over it.

        Nothing is released: the line still has to be picked before the
        order can complete.  The task reopens with the next change to its
        line, e.g. a pick or a resolved exception.
        """
        if not (reason and reason.strip()):
            raise ValidationError("reason", "a skip reason is required")
        order = lock_order(self.session, order_id)
        require_status(order, "skip_pick_task", [OrderStatus.PICKING])
        item = require_item(order, order_item_id)
        _require_active(order, item)
        task = item.pick_tasks[-1] if item.pick_tasks else None
        if task is None or task.status not in INCOMPLETE_PICK_TASK_STATUSES:
            raise ValidationError(
                "order_item_id", f"line {order_item_id} has no open pick task to skip"
            )

        task.status = PickTaskStatus.SKIPPED
        task.skip_reason = reason.strip()
        task.skipped_at = self._clock.now()
        order.updated_by_id = actor.user_id
        self.session.flush()

        logger.info(
            "pick_task_skipped",
            extra={
                "order_item_id": order_item_id,
                "sku": task.sku,
                "bin_location": task.bin_location,
                "remaining": task.quantity - task.picked_quantity,
                "reason": task.skip_reason,
            },
        )
        return OrderDTO.from_model(order)

    def return_picks(
        self,
        order: Order,
        item: OrderItem,
        quantity: int,
        actor: Actor,
        reason: str,
    ) -> list[LedgerResult]:
        """
        Un-pick ``quantity`` units of a locked line, newest picks first.

        Units that were picked at an earlier (sku, bin) go back to that bin,
        so their reservation moves to the line's current key where they
        will be picked again.  Verification is capped at the new picked
        count.  Returns the ledger effects of those moves.
        """
        current = (item.effective_sku, item.bin_location)
        moved: dict[tuple[str, str], int] = {}
        for key, share in take_back_picks(item, quantity):
            if key != current:
                moved[key] = moved.get(key, 0) + share

        effects: list[LedgerResult] = []
        if moved:
            self._ledger.lock_units([*moved, current])
            for (sku, bin_location), share in sorted(moved.items()):
                effects.append(
                    self._ledger.release(sku, bin_location, share, order.order_id, actor, reason)
                )
                effects.append(
                    self._ledger.reserve(*current, share, order.order_id, actor, reason)
                )
            logger.info(
                "picked_reservation_moved",
                extra={
                    "order_item_id": item.order_item_id,
                    "quantity": sum(moved.values()),
                    "sku": current[0],
                    "bin_location": current[1],
                },
            )

        item.verified_quantity = min(item.verified_quantity, item.picked_quantity)
        item.refresh_pick_status()
        item.updated_by_id = actor.user_id
        sync_pick_task(item, self._clock.now())
        return effects

    def maybe_complete_picking(self, order: Order, actor: Actor) -> bool:
        """Advance a PICKING order to PICKED once every active line is picked."""
        if OrderStatus(order.status) != OrderStatus.PICKING:
            return False
        active = order.active_items
        if not active or not all(item.is_fully_picked for item in active):
            return False

        check_prerequisites(
            OrderStatus.PICKED,
            TransitionContext(
                all_lines_picked=True,
                incomplete_pick_tasks=open_pick_task_count(order),
            ),
        )
        order.picked_at = self._clock.now()
        order.progress = 100
        self._state_changes.transition(order, OrderStatus.PICKED, actor)
        logger.info("order_picking_completed", extra={"picker_id": order.picker_id})
        return True

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def count_packing_orders(self, packer_id: str) -> int:
        return self.session.execute(
            select(func.count(Order.id)).where(
                Order.packer_id == packer_id,
                Order.status == OrderStatus.PACKING.value,
            )
        ).scalar_one()

    def claim_for_packing(self, order_id: str, packer_id: str, actor: Actor) -> OrderDTO:
        order = lock_order(self.session, order_id)
        status = OrderStatus(order.status)
        if (
            order.packer_id
            and order.packer_id != packer_id
            and status in (OrderStatus.PACKING, OrderStatus.PACKED)
        ):
            raise OrderAlreadyClaimedError(order_id, held_by=order.packer_id, role="packer")
        require_status(order, "claim_for_packing", [OrderStatus.PICKED])

        packer_active = bool(packer_id) and self._workers.is_active(packer_id, WorkerRole.PACKER)
        active_orders = 0
        if packer_id:
            self._worker_locks.acquire(packer_id, WorkerRole.PACKER)
            active_orders = self.count_packing_orders(packer_id)

        check_prerequisites(
            OrderStatus.PACKING,
            TransitionContext(
                packer_id=packer_id,
                packer_active=packer_active,
                packer_active_orders=active_orders,
                max_orders_per_packer=self._policy.max_orders_per_packer,
            ),
        )

        order.packer_id = packer_id
        order.packing_started_at = self._clock.now()
        order.progress = packing_progress(order)
        self._state_changes.transition(order, OrderStatus.PACKING, actor)

        logger.info("order_claimed_for_packing", extra={"packer_id": packer_id})
        return OrderDTO.from_model(order)

    def record_pack(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
    ) -> PackResult:
        order = lock_order(self.session, order_id)
        require_status(order, "record_pack", [OrderStatus.PACKING])
        item = require_item(order, order_item_id)
        _require_positive(quantity)
        if item.verified_quantity + quantity > item.picked_quantity:
            raise ValidationError(
                "quantity",
                f"verifying {quantity} would exceed picked {item.picked_quantity} "
                f"(already verified {item.verified_quantity})",
            )
        _require_active(order, item)

        item.verified_quantity += quantity
        item.skip_reason = None
        item.updated_by_id = actor.user_id
        order.progress = packing_progress(order)
        order.updated_by_id = actor.user_id
        self.session.flush()

        logger.info(
            "pack_recorded",
            extra={
                "order_item_id": order_item_id,
                "quantity": quantity,
                "verified_quantity": item.verified_quantity,
                "progress": order.progress,
            },
        )

        active = order.active_items
        if active and all(i.is_fully_verified for i in active):
            check_prerequisites(
                OrderStatus.PACKED,
                TransitionContext(all_lines_verified=True),
            )
            order.packed_at = self._clock.now()
            order.progress = 100
            self._state_changes.transition(order, OrderStatus.PACKED, actor)
            logger.info("order_packing_completed", extra={"packer_id": order.packer_id})

        return PackResult(order=OrderDTO.from_model(order))

    def undo_pack(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
    ) -> OrderDTO:
        order = lock_order(self.session, order_id)
        require_status(order, "undo_pack", [OrderStatus.PACKING])
        item = require_item(order, order_item_id)
        _require_positive(quantity)
        if quantity > item.verified_quantity:
            raise ValidationError(
                "quantity",
                f"cannot undo {quantity}; only {item.verified_quantity} verified",
            )

        item.verified_quantity -= quantity
        item.updated_by_id = actor.user_id
        order.progress = packing_progress(order)
        order.updated_by_id = actor.user_id
        self.session.flush()

        logger.info(
            "pack_undone",
            extra={
                "order_item_id": order_item_id,
                "quantity": quantity,
                "verified_quantity": item.verified_quantity,
            },
        )
        return OrderDTO.from_model(order)

    def skip_packing_item(
        self,
        order_id: str,
        order_item_id: str,
        reason: str,
        actor: Actor,
    ) -> PackResult:
        """
        Flag a line the packer cannot verify and hand it to a supervisor.

        The line keeps its verified count and the order stays PACKING.  An
        OPEN exception for the unverified units is recorded against it.
        """
        if not (reason and reason.strip()):
            raise ValidationError("reason", "a skip reason is required")
        order = lock_order(self.session, order_id)
        require_status(order, "skip_packing_item", [OrderStatus.PACKING])
        item = require_item(order, order_item_id)
        _require_active(order, item)
        if item.is_fully_verified:
            raise ValidationError(
                "order_item_id", f"line {order_item_id} is already fully verified"
            )

        item.skip_reason = reason.strip()
        item.updated_by_id = actor.user_id
        exc = self._exceptions.record_open(
            order,
            item,
            ExceptionType.OTHER,
            quantity_expected=item.quantity,
            quantity_actual=item.verified_quantity,
            reason=f"skipped at packing: {item.skip_reason}",
            actor=actor,
        )

        logger.info(
            "packing_item_skipped",
            extra={
                "order_item_id": order_item_id,
                "verified_quantity": item.verified_quantity,
                "exception_id": exc.exception_id,
            },
        )
        return PackResult(
            order=OrderDTO.from_model(order),
            exception=OrderExceptionDTO.from_model(exc),
        )

    def unclaim_packing(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        """PACKING -> PICKED rollback: verification restarts from zero."""
        if not (reason and reason.strip()):
            raise ValidationError("reason", "an unclaim reason is required")
        order = lock_order(self.session, order_id)
        require_status(order, "unclaim_packing", [OrderStatus.PACKING])
        previous_packer = order.packer_id

        for item in order.items:
            if item.verified_quantity or item.skip_reason:
                item.verified_quantity = 0
                item.skip_reason = None
                item.updated_by_id = actor.user_id

        order.packer_id = None
        order.packing_started_at = None
        order.progress = 100
        self._state_changes.transition(
            order, OrderStatus.PICKED, actor, reason=reason, compensating=True
        )
        self._exceptions.record_resolved(order, ExceptionType.UNCLAIM, reason, actor)

        logger.info("order_packing_unclaimed", extra={"packer_id": previous_packer})
        return OrderDTO.from_model(order)

    # ------------------------------------------------------------------
    # Shipping
    # ------------------------------------------------------------------

    def ship_order(
        self,
        order_id: str,
        shipping_method: str,
        carrier: str,
        actor: Actor,
        tracking_number: str | None = None,
    ) -> OrderDTO:
        """PACKED -> SHIPPED, consuming every outstanding reservation."""
        order = lock_order(self.session, order_id)
        require_status(order, "ship", [OrderStatus.PACKED])
        check_prerequisites(
            OrderStatus.SHIPPED,
            TransitionContext(shipping_method=shipping_method, carrier=carrier),
        )

        deductions = self._ledger.deduct_all(
            order_id, actor, reason=f"shipped via {carrier.strip()}"
        )

        order.shipping_method = shipping_method.strip()
        order.carrier = carrier.strip()
        order.tracking_number = tracking_number
        order.shipped_at = self._clock.now()
        self._state_changes.transition(order, OrderStatus.SHIPPED, actor)

        logger.info(
            "order_shipped",
            extra={
                "carrier": order.carrier,
                "shipping_method": order.shipping_method,
                "deductions": len(deductions),
            },
        )
        return OrderDTO.from_model(order)
