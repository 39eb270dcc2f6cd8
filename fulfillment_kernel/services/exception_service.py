"""
ExceptionService -- recording and reviewing fulfillment exceptions.

Responsibility:
    Creates OrderException rows (reported by pickers, packers and the
    kernel itself) and walks them through the review lifecycle defined by
    ``ORDER_EXCEPTION_WORKFLOW``.  Compensating actions for a resolution
    live in ExceptionResolutionService; this service only owns the
    exception record.

Architecture position:
    Kernel > Services -- imperative shell.  Used by AllocationService,
    PickPackService, OrderService and ExceptionResolutionService.

Invariants enforced:
    - Logging an exception never changes the order's status.
    - Status changes follow ORDER_EXCEPTION_WORKFLOW; RESOLVED and
      CANCELLED are terminal.
    - Exceptions are never deleted (db/immutability.py + trigger).

Failure modes:
    - OrderNotFoundError / OrderItemNotFoundError on log_exception.
    - OrderExceptionNotFoundError for an unknown exception id.
    - ValidationError for negative quantities or a blank reason.
    - InvalidTransitionError for an illegal review step.
    - ExceptionClosedError when resolving an already closed exception.

Audit relevance:
    Reporter, reviewer and resolver identities and timestamps are kept on
    the row.  Kernel-generated records (UNCLAIM, UNDO_PICK) are created
    directly in RESOLVED so that the audit trail shows them without
    putting them in a supervisor's queue.
"""

from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor, OrderExceptionDTO
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import (
    ExceptionResolution,
    ExceptionStatus,
    ExceptionType,
)
from fulfillment_kernel.domain.workflow import EXCEPTION_OPEN_STATES, ORDER_EXCEPTION_WORKFLOW
from fulfillment_kernel.exceptions import (
    ExceptionClosedError,
    OrderExceptionNotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.models.order_exception import OrderException
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.order_access import require_item

logger = get_logger("services.exception")

# Types that skip OPEN because a supervisor must look at them first.
_STARTS_IN_REVIEW = frozenset({ExceptionType.SHORT_PICK_BACKORDER})

_TERMINAL = frozenset(ExceptionStatus(s) for s in ORDER_EXCEPTION_WORKFLOW.terminal_states)


def _require_text(field: str, value: str | None) -> str:
    if not (value and value.strip()):
        raise ValidationError(field, "must not be empty")
    return value.strip()


def _require_count(field: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(field, f"must be a non-negative integer, got {value!r}")


class ExceptionService(BaseService[OrderException]):
    """
    Owner of OrderException records and their review lifecycle.

    Contract:
        Public methods return frozen ``OrderExceptionDTO``s and flush only.
        Internal helpers used by sibling services return the ORM row.

    Non-goals:
        - Does NOT run compensating actions (ExceptionResolutionService).
        - Does NOT send notifications.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: FulfillmentPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY

    def new_exception_id(self) -> str:
        """PREFIX-XXXXXXXXXX with ten uppercase hex characters."""
        return f"{self._policy.exception_id_prefix}-{uuid4().hex[:10].upper()}"

    # ------------------------------------------------------------------
    # Recording
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
        """
        Report a discrepancy on one order line.

        Postconditions:
            - A new OrderException exists in OPEN (REVIEWING for
              SHORT_PICK_BACKORDER) with quantity_short = expected - actual.
            - The order and its lines are unchanged.
        """
        try:
            exception_type = ExceptionType(exception_type)
        except ValueError:
            raise ValidationError("exception_type", f"unknown type {exception_type!r}") from None
        _require_count("quantity_expected", quantity_expected)
        _require_count("quantity_actual", quantity_actual)
        reason = _require_text("reason", reason)

        order = self.session.execute(
            select(Order).where(Order.order_id == order_id)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        item = require_item(order, order_item_id)

        status = (
            ExceptionStatus.REVIEWING
            if exception_type in _STARTS_IN_REVIEW
            else ExceptionStatus.OPEN
        )
        exc = self._create(
            order,
            item,
            exception_type,
            status,
            quantity_expected,
            quantity_actual,
            reason,
            actor,
            substitute_sku=substitute_sku,
        )
        return OrderExceptionDTO.from_model(exc)

    def record_open(
        self,
        order: Order,
        item: OrderItem,
        exception_type: ExceptionType,
        quantity_expected: int,
        quantity_actual: int,
        reason: str,
        actor: Actor,
    ) -> OrderException:
        """Kernel-detected discrepancy (e.g. BIN_MISMATCH) awaiting review."""
        return self._create(
            order, item, exception_type, ExceptionStatus.OPEN,
            quantity_expected, quantity_actual, reason, actor,
        )

    def record_resolved(
        self,
        order: Order,
        exception_type: ExceptionType,
        reason: str,
        actor: Actor,
        item: OrderItem | None = None,
        quantity_expected: int = 0,
        quantity_actual: int = 0,
    ) -> OrderException:
        """Audit-only record (UNCLAIM, UNDO_PICK), closed on creation."""
        exc = self._create(
            order, item, exception_type, ExceptionStatus.RESOLVED,
            quantity_expected, quantity_actual, reason, actor,
        )
        exc.resolution = ExceptionResolution.MANUAL_OVERRIDE
        exc.resolved_by = actor.user_id
        exc.resolved_at = exc.reported_at
        exc.resolution_notes = reason
        self.session.flush()
        return exc

    def _create(
        self,
        order: Order,
        item: OrderItem | None,
        exception_type: ExceptionType,
        status: ExceptionStatus,
        quantity_expected: int,
        quantity_actual: int,
        reason: str,
        actor: Actor,
        substitute_sku: str | None = None,
    ) -> OrderException:
        exc = OrderException(
            exception_id=self.new_exception_id(),
            order_id=order.order_id,
            order_item_id=item.order_item_id if item is not None else None,
            sku=item.effective_sku if item is not None else None,
            exception_type=exception_type,
            status=status,
            quantity_expected=quantity_expected,
            quantity_actual=quantity_actual,
            quantity_short=quantity_expected - quantity_actual,
            reason=reason,
            substitute_sku=substitute_sku,
            reported_by=actor.user_id,
            reported_at=self._clock.now(),
            created_by_id=actor.user_id,
        )
        self.session.add(exc)
        self.session.flush()

        logger.info(
            "exception_logged",
            extra={
                "exception_id": exc.exception_id,
                "exception_type": exception_type.value,
                "exception_status": status.value,
                "order_item_id": exc.order_item_id,
                "quantity_short": exc.quantity_short,
            },
        )
        return exc

    # ------------------------------------------------------------------
    # Review lifecycle
    # ------------------------------------------------------------------

    def lock(self, exception_id: str) -> OrderException:
        exc = self.session.execute(
            select(OrderException)
            .where(OrderException.exception_id == exception_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if exc is None:
            raise OrderExceptionNotFoundError(exception_id)
        return exc

    def order_id_of(self, exception_id: str) -> str:
        """Unlocked lookup, so callers can lock the order before the exception row."""
        order_id = self.session.execute(
            select(OrderException.order_id).where(OrderException.exception_id == exception_id)
        ).scalar_one_or_none()
        if order_id is None:
            raise OrderExceptionNotFoundError(exception_id)
        return order_id

    def get(self, exception_id: str) -> OrderExceptionDTO:
        exc = self.session.execute(
            select(OrderException).where(OrderException.exception_id == exception_id)
        ).scalar_one_or_none()
        if exc is None:
            raise OrderExceptionNotFoundError(exception_id)
        return OrderExceptionDTO.from_model(exc)

    def _move(self, exc: OrderException, to_status: ExceptionStatus, actor: Actor) -> None:
        from_status = ExceptionStatus(exc.status)
        ORDER_EXCEPTION_WORKFLOW.require(from_status.value, to_status.value)
        exc.status = to_status
        exc.updated_by_id = actor.user_id
        logger.info(
            "exception_status_changed",
            extra={
                "exception_id": exc.exception_id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

    def start_review(self, exception_id: str, actor: Actor, notes: str | None = None) -> OrderExceptionDTO:
        exc = self.lock(exception_id)
        self._move(exc, ExceptionStatus.REVIEWING, actor)
        exc.reviewed_by = actor.user_id
        exc.reviewed_at = self._clock.now()
        if notes:
            exc.review_notes = notes
        self.session.flush()
        return OrderExceptionDTO.from_model(exc)

    def approve_exception(self, exception_id: str, actor: Actor, notes: str | None = None) -> OrderExceptionDTO:
        exc = self.lock(exception_id)
        self._move(exc, ExceptionStatus.APPROVED, actor)
        self._stamp_review(exc, actor, notes)
        self.session.flush()
        return OrderExceptionDTO.from_model(exc)

    def reject_exception(self, exception_id: str, actor: Actor, notes: str) -> OrderExceptionDTO:
        notes = _require_text("notes", notes)
        exc = self.lock(exception_id)
        self._move(exc, ExceptionStatus.REJECTED, actor)
        self._stamp_review(exc, actor, notes)
        self.session.flush()
        return OrderExceptionDTO.from_model(exc)

    def cancel_exception(self, exception_id: str, actor: Actor, reason: str) -> OrderExceptionDTO:
        reason = _require_text("reason", reason)
        exc = self.lock(exception_id)
        self._cancel(exc, actor, reason)
        self.session.flush()
        return OrderExceptionDTO.from_model(exc)

    def _cancel(self, exc: OrderException, actor: Actor, reason: str) -> None:
        self._move(exc, ExceptionStatus.CANCELLED, actor)
        exc.resolved_by = actor.user_id
        exc.resolved_at = self._clock.now()
        exc.resolution_notes = reason

    def _stamp_review(self, exc: OrderException, actor: Actor, notes: str | None) -> None:
        exc.reviewed_by = actor.user_id
        exc.reviewed_at = self._clock.now()
        if notes:
            exc.review_notes = notes

    def cancel_open_for_order(
        self,
        order_id: str,
        actor: Actor,
        reason: str,
        exclude: str | None = None,
    ) -> list[OrderExceptionDTO]:
        """Cancel every OPEN/REVIEWING exception of an order being cancelled."""
        rows = self.session.execute(
            select(OrderException)
            .where(
                OrderException.order_id == order_id,
                OrderException.status.in_(sorted(s.value for s in EXCEPTION_OPEN_STATES)),
            )
            .order_by(OrderException.exception_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        cancelled = []
        for exc in rows:
            if exc.exception_id == exclude:
                continue
            self._cancel(exc, actor, reason)
            cancelled.append(exc)
        self.session.flush()
        return [OrderExceptionDTO.from_model(exc) for exc in cancelled]

    # ------------------------------------------------------------------
    # Resolution bookkeeping (compensation runs in between)
    # ------------------------------------------------------------------

    def ensure_resolvable(self, exc: OrderException) -> None:
        if ExceptionStatus(exc.status) in _TERMINAL:
            raise ExceptionClosedError(exc.exception_id, ExceptionStatus(exc.status).value)

    def complete_resolution(
        self,
        exc: OrderException,
        resolution: ExceptionResolution,
        actor: Actor,
        notes: str | None = None,
        substitute_sku: str | None = None,
    ) -> OrderException:
        """
        Walk ``exc`` to RESOLVED.

        From OPEN or REVIEWING the supervisor's resolution implies review
        and approval, so the intermediate steps are taken with ``actor`` as
        reviewer.  APPROVED and REJECTED go straight to RESOLVED.
        """
        self.ensure_resolvable(exc)
        now = self._clock.now()

        if ExceptionStatus(exc.status) == ExceptionStatus.OPEN:
            self._move(exc, ExceptionStatus.REVIEWING, actor)
        if ExceptionStatus(exc.status) == ExceptionStatus.REVIEWING:
            self._move(exc, ExceptionStatus.APPROVED, actor)
            exc.reviewed_by = actor.user_id
            exc.reviewed_at = now
        self._move(exc, ExceptionStatus.RESOLVED, actor)

        exc.resolution = resolution
        exc.resolved_by = actor.user_id
        exc.resolved_at = now
        exc.resolution_notes = notes
        if substitute_sku:
            exc.substitute_sku = substitute_sku
        self.session.flush()

        logger.info(
            "exception_resolved",
            extra={
                "exception_id": exc.exception_id,
                "resolution": resolution.value,
            },
        )
        return exc
