"""
FulfillmentOrchestrator -- the public surface of the fulfillment kernel.

Responsibility:
    Builds every kernel service once per session and exposes the external
    operations (intake, claim, pick, pack, ship, cancel, backorder,
    exceptions, stock receipt and adjustment).  Each operation is one
    database transaction: commit on success, rollback on any error.

Architecture position:
    Kernel > Services -- the only layer that calls ``session.commit()``.
    Callers (HTTP handlers, workers, tests) construct one orchestrator per
    session.

Invariants enforced:
    - Transaction boundary: a failed operation leaves no partial writes
      (when auto_commit=True).
    - Every operation runs inside a bound LogContext carrying a fresh
      correlation_id, the actor and the order/exception it targets.

Failure modes:
    - Re-raises every service error after rollback.  Kernel errors are
      logged at WARNING; InvariantViolationError and
      ImmutabilityViolationError at ERROR as ``invariant_violation_detected``
      with the traceback.

Audit relevance:
    ``<operation>_started`` / ``_completed`` / ``_failed`` bracket every call
    with its duration, so each audit row can be tied back to the request
    that wrote it through the correlation_id.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    Actor,
    LedgerResult,
    OrderDTO,
    OrderExceptionDTO,
    OrderLineSpec,
    PackResult,
    PickResult,
    ResolutionResult,
)
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import (
    ExceptionResolution,
    ExceptionType,
    OrderPriority,
)
from fulfillment_kernel.domain.workers import StaticWorkerDirectory, WorkerDirectory
from fulfillment_kernel.exceptions import (
    FulfillmentKernelError,
    ImmutabilityViolationError,
    InvariantViolationError,
    ValidationError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.services.allocation_service import AllocationService
from fulfillment_kernel.services.exception_resolution import ExceptionResolutionService
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.pick_pack_service import PickPackService
from fulfillment_kernel.services.state_change_logger import StateChangeLogger
from fulfillment_kernel.services.worker_lock_service import WorkerLockService

logger = get_logger("services.orchestrator")

T = TypeVar("T")


class FulfillmentOrchestrator:
    """
    One session, one set of services, one transaction per operation.

    Contract:
        Every public method returns frozen DTOs and either commits or rolls
        back before returning (when ``auto_commit`` is True).  With
        ``auto_commit=False`` the caller owns the transaction and may
        compose several operations into one unit of work.

    Non-goals:
        - Does NOT authenticate or authorize; ``actor`` arrives trusted.
        - Does NOT read configuration files; ``policy`` is injected.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        workers: WorkerDirectory | None = None,
        policy: FulfillmentPolicy | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.workers = workers if workers is not None else StaticWorkerDirectory(allow_all=True)
        self.policy = policy or DEFAULT_POLICY
        self._auto_commit = auto_commit

        self.ledger = InventoryLedger(session, self.clock)
        self.state_changes = StateChangeLogger(session, self.clock)
        self.exception_service = ExceptionService(session, self.clock, self.policy)
        self.worker_locks = WorkerLockService(session)
        self.allocation = AllocationService(
            session,
            self.ledger,
            self.state_changes,
            self.exception_service,
            self.worker_locks,
            self.workers,
            self.clock,
            self.policy,
        )
        self.pick_pack = PickPackService(
            session,
            self.ledger,
            self.state_changes,
            self.exception_service,
            self.worker_locks,
            self.workers,
            self.clock,
            self.policy,
        )
        self.orders = OrderService(
            session,
            self.ledger,
            self.state_changes,
            self.exception_service,
            self.clock,
            self.policy,
        )
        self.resolution = ExceptionResolutionService(
            session,
            self.exception_service,
            self.ledger,
            self.orders,
            self.pick_pack,
            self.clock,
        )

    # ------------------------------------------------------------------
    # Transaction and logging boundary
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        actor: Actor,
        fn: Callable[[], T],
        order_id: str | None = None,
        exception_id: str | None = None,
        **fields: Any,
    ) -> T:
        if not isinstance(actor, Actor):
            raise ValidationError("actor", f"an Actor is required, got {type(actor).__name__}")

        with LogContext.bind(
            correlation_id=str(uuid4()),
            order_id=order_id,
            actor_id=actor.user_id,
            exception_id=exception_id,
        ):
            logger.info(f"{operation}_started", extra={"actor_role": actor.role, **fields})
            t0 = time.monotonic()
            try:
                result = fn()
                if self._auto_commit:
                    self.session.commit()
            except (InvariantViolationError, ImmutabilityViolationError) as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    "invariant_violation_detected",
                    extra={"operation": operation, "error_code": exc.code},
                    exc_info=True,
                )
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms, "error_code": exc.code},
                )
                raise
            except FulfillmentKernelError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "duration_ms": duration_ms,
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                raise
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(f"{operation}_completed", extra={"duration_ms": duration_ms})
            return result

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        order_id: str,
        lines: Sequence[OrderLineSpec],
        actor: Actor,
        priority: OrderPriority | str = OrderPriority.NORMAL,
        customer_name: str | None = None,
    ) -> OrderDTO:
        return self._run(
            "create_order",
            actor,
            lambda: self.orders.create_order(order_id, lines, actor, priority, customer_name),
            order_id=order_id,
        )

    def cancel_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        return self._run(
            "cancel_order",
            actor,
            lambda: self.orders.cancel_order(order_id, actor, reason),
            order_id=order_id,
        )

    def backorder_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        return self._run(
            "backorder_order",
            actor,
            lambda: self.orders.backorder_order(order_id, actor, reason),
            order_id=order_id,
        )

    def release_backorder(self, order_id: str, actor: Actor) -> OrderDTO:
        return self._run(
            "release_backorder",
            actor,
            lambda: self.orders.release_backorder(order_id, actor),
            order_id=order_id,
        )

    # ------------------------------------------------------------------
    # Picking
    # ------------------------------------------------------------------

    def claim_order(self, order_id: str, picker_id: str, actor: Actor) -> OrderDTO:
        return self._run(
            "claim_order",
            actor,
            lambda: self.allocation.claim_order(order_id, picker_id, actor),
            order_id=order_id,
            picker_id=picker_id,
        )

    def unclaim_order(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        return self._run(
            "unclaim_order",
            actor,
            lambda: self.allocation.unclaim_order(order_id, actor, reason),
            order_id=order_id,
        )

    def record_pick(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        bin_location: str,
        actor: Actor,
    ) -> PickResult:
        return self._run(
            "record_pick",
            actor,
            lambda: self.pick_pack.record_pick(order_id, order_item_id, quantity, bin_location, actor),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def undo_pick(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
        reason: str,
    ) -> OrderDTO:
        return self._run(
            "undo_pick",
            actor,
            lambda: self.pick_pack.undo_pick(order_id, order_item_id, quantity, actor, reason),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def skip_pick_task(
        self,
        order_id: str,
        order_item_id: str,
        reason: str,
        actor: Actor,
    ) -> OrderDTO:
        return self._run(
            "skip_pick_task",
            actor,
            lambda: self.pick_pack.skip_pick_task(order_id, order_item_id, reason, actor),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    # ------------------------------------------------------------------
    # Packing and shipping
    # ------------------------------------------------------------------

    def claim_for_packing(self, order_id: str, packer_id: str, actor: Actor) -> OrderDTO:
        return self._run(
            "claim_for_packing",
            actor,
            lambda: self.pick_pack.claim_for_packing(order_id, packer_id, actor),
            order_id=order_id,
            packer_id=packer_id,
        )

    def record_pack(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
    ) -> PackResult:
        return self._run(
            "record_pack",
            actor,
            lambda: self.pick_pack.record_pack(order_id, order_item_id, quantity, actor),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def undo_pack(
        self,
        order_id: str,
        order_item_id: str,
        quantity: int,
        actor: Actor,
    ) -> OrderDTO:
        return self._run(
            "undo_pack",
            actor,
            lambda: self.pick_pack.undo_pack(order_id, order_item_id, quantity, actor),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def skip_packing_item(
        self,
        order_id: str,
        order_item_id: str,
        reason: str,
        actor: Actor,
    ) -> PackResult:
        return self._run(
            "skip_packing_item",
            actor,
            lambda: self.pick_pack.skip_packing_item(order_id, order_item_id, reason, actor),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def unclaim_packing(self, order_id: str, actor: Actor, reason: str) -> OrderDTO:
        return self._run(
            "unclaim_packing",
            actor,
            lambda: self.pick_pack.unclaim_packing(order_id, actor, reason),
            order_id=order_id,
        )

    def ship_order(
        self,
        order_id: str,
        shipping_method: str,
        carrier: str,
        actor: Actor,
        tracking_number: str | None = None,
    ) -> OrderDTO:
        return self._run(
            "ship_order",
            actor,
            lambda: self.pick_pack.ship_order(
                order_id, shipping_method, carrier, actor, tracking_number
            ),
            order_id=order_id,
        )

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------

    def log_exception(
        self,
        order_id: str,
        order_item_id: str,
        exception_type: ExceptionType | str,
        quantity_expected: int,
        quantity_actual: int,
        reason: str,
        actor: Actor,
        substitute_sku: str | None = None,
    ) -> OrderExceptionDTO:
        return self._run(
            "log_exception",
            actor,
            lambda: self.exception_service.log_exception(
                order_id,
                order_item_id,
                exception_type,
                quantity_expected,
                quantity_actual,
                reason,
                actor,
                substitute_sku=substitute_sku,
            ),
            order_id=order_id,
            order_item_id=order_item_id,
        )

    def start_review(
        self, exception_id: str, actor: Actor, notes: str | None = None
    ) -> OrderExceptionDTO:
        return self._run(
            "start_review",
            actor,
            lambda: self.exception_service.start_review(exception_id, actor, notes),
            exception_id=exception_id,
        )

    def approve_exception(
        self, exception_id: str, actor: Actor, notes: str | None = None
    ) -> OrderExceptionDTO:
        return self._run(
            "approve_exception",
            actor,
            lambda: self.exception_service.approve_exception(exception_id, actor, notes),
            exception_id=exception_id,
        )

    def reject_exception(self, exception_id: str, actor: Actor, notes: str) -> OrderExceptionDTO:
        return self._run(
            "reject_exception",
            actor,
            lambda: self.exception_service.reject_exception(exception_id, actor, notes),
            exception_id=exception_id,
        )

    def cancel_exception(self, exception_id: str, actor: Actor, reason: str) -> OrderExceptionDTO:
        return self._run(
            "cancel_exception",
            actor,
            lambda: self.exception_service.cancel_exception(exception_id, actor, reason),
            exception_id=exception_id,
        )

    def resolve_exception(
        self,
        exception_id: str,
        resolution: ExceptionResolution | str,
        actor: Actor,
        notes: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> ResolutionResult:
        return self._run(
            "resolve_exception",
            actor,
            lambda: self.resolution.resolve_exception(
                exception_id, resolution, actor, notes=notes, extra=extra
            ),
            exception_id=exception_id,
            resolution=str(getattr(resolution, "value", resolution)),
        )

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def receive_stock(
        self,
        sku: str,
        bin_location: str,
        quantity: int,
        actor: Actor,
        reason: str | None = None,
    ) -> LedgerResult:
        return self._run(
            "receive_stock",
            actor,
            lambda: self.ledger.receive(sku, bin_location, quantity, actor, reason),
            sku=sku,
            bin_location=bin_location,
        )

    def adjust_stock(
        self,
        sku: str,
        bin_location: str,
        delta: int,
        actor: Actor,
        reason: str,
    ) -> LedgerResult:
        return self._run(
            "adjust_stock",
            actor,
            lambda: self.ledger.adjust(sku, bin_location, delta, actor, reason),
            sku=sku,
            bin_location=bin_location,
        )
