"""
StateChangeLogger -- the single path by which an order changes status.

Responsibility:
    Validates the edge against the state machine, sets the new status and
    appends the OrderStateChange audit row, all inside the caller's
    transaction.  Services never assign ``order.status`` themselves.

Architecture position:
    Kernel > Services -- imperative shell.  Used by every order-mutating
    service.

Invariants enforced:
    - Every persisted status change has exactly one OrderStateChange row
      written in-process (no database trigger writes audit rows).
    - Forward edges are checked with ``validate_transition``; the two
      compensating edges with ``validate_rollback``.

Failure modes:
    - InvalidTransitionError: edge not in the table.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.domain.order_state_machine import (
    validate_rollback,
    validate_transition,
)
from fulfillment_kernel.domain.statuses import OrderStatus
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.models.order_state_change import OrderStateChange

logger = get_logger("services.state_change")


class StateChangeLogger:
    """Applies validated status transitions and appends their audit rows."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record_creation(self, order: Order, actor: Actor, reason: str | None = None) -> OrderStateChange:
        """Append the NULL -> PENDING row for a freshly inserted order."""
        return self._append(order.order_id, None, OrderStatus(order.status), actor, reason)

    def transition(
        self,
        order: Order,
        to_status: OrderStatus,
        actor: Actor,
        reason: str | None = None,
        compensating: bool = False,
    ) -> OrderStateChange:
        """
        Move ``order`` to ``to_status`` and log the change.

        Preconditions: the order row is locked by the caller.
        """
        from_status = OrderStatus(order.status)
        if compensating:
            validate_rollback(from_status, to_status)
        else:
            validate_transition(from_status, to_status)

        order.status = to_status
        order.updated_by_id = actor.user_id
        return self._append(order.order_id, from_status, to_status, actor, reason)

    def _append(
        self,
        order_id: str,
        from_status: OrderStatus | None,
        to_status: OrderStatus,
        actor: Actor,
        reason: str | None,
    ) -> OrderStateChange:
        last = self._session.execute(
            select(func.max(OrderStateChange.sequence)).where(
                OrderStateChange.order_id == order_id
            )
        ).scalar_one()
        change = OrderStateChange(
            order_id=order_id,
            sequence=(last or 0) + 1,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            actor_id=actor.user_id,
            actor_role=actor.role,
            reason=reason,
            occurred_at=self._clock.now(),
        )
        self._session.add(change)
        self._session.flush()

        logger.info(
            "order_state_changed",
            extra={
                "from_status": change.from_status,
                "to_status": change.to_status,
                "sequence": change.sequence,
                "reason": reason,
            },
        )
        return change
