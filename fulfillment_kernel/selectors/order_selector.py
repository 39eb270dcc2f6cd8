"""
Module: fulfillment_kernel.selectors.order_selector
Responsibility: Read-only order queries -- single order lookup, the pick
    queue, a picker's next task, per-worker workload, and an order's
    state-change history.
Architecture position: Kernel > Selectors.

Pick queue ordering:
    PENDING orders with no picker, highest priority first, then oldest
    ``received_at``, then ``order_id`` as a stable tie-breaker.  The order
    is computed in SQL so pagination is consistent.
"""

from sqlalchemy import case, func, select

from fulfillment_kernel.domain.dtos import OrderDTO, OrderStateChangeDTO, PickTaskDTO
from fulfillment_kernel.domain.order_state_machine import (
    PACKER_REQUIRED_STATES,
    PICKER_REQUIRED_STATES,
)
from fulfillment_kernel.domain.statuses import (
    INCOMPLETE_PICK_TASK_STATUSES,
    OrderPriority,
    OrderStatus,
)
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.models.order_state_change import OrderStateChange
from fulfillment_kernel.selectors.base import BaseSelector

_PRIORITY_RANK = case(
    {p.value: p.rank for p in OrderPriority},
    value=Order.priority,
    else_=-1,
)


def _values(statuses) -> list[str]:
    return sorted(OrderStatus(s).value for s in statuses)


class OrderSelector(BaseSelector[Order]):
    """Order read paths."""

    def get_order(self, order_id: str) -> OrderDTO | None:
        order = self.session.execute(
            select(Order).where(Order.order_id == order_id)
        ).scalar_one_or_none()
        return OrderDTO.from_model(order) if order is not None else None

    def orders_by_status(self, status: OrderStatus | str) -> list[OrderDTO]:
        rows = self.session.execute(
            select(Order)
            .where(Order.status == OrderStatus(status).value)
            .order_by(Order.received_at, Order.order_id)
        ).scalars().all()
        return [OrderDTO.from_model(o) for o in rows]

    def pick_queue(self, limit: int | None = None) -> list[OrderDTO]:
        """Unclaimed PENDING orders in the order pickers should take them."""
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.picker_id.is_(None),
            )
            .order_by(_PRIORITY_RANK.desc(), Order.received_at, Order.order_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [OrderDTO.from_model(o) for o in self.session.execute(stmt).scalars().all()]

    def pack_queue(self) -> list[OrderDTO]:
        """PICKED orders waiting for a packer, oldest pick first."""
        rows = self.session.execute(
            select(Order)
            .where(Order.status == OrderStatus.PICKED.value)
            .order_by(_PRIORITY_RANK.desc(), Order.picked_at, Order.order_id)
        ).scalars().all()
        return [OrderDTO.from_model(o) for o in rows]

    def orders_for_picker(self, picker_id: str) -> list[OrderDTO]:
        rows = self.session.execute(
            select(Order)
            .where(
                Order.picker_id == picker_id,
                Order.status.in_(_values(PICKER_REQUIRED_STATES)),
            )
            .order_by(Order.claimed_at, Order.order_id)
        ).scalars().all()
        return [OrderDTO.from_model(o) for o in rows]

    def orders_for_packer(self, packer_id: str) -> list[OrderDTO]:
        rows = self.session.execute(
            select(Order)
            .where(
                Order.packer_id == packer_id,
                Order.status.in_(_values(PACKER_REQUIRED_STATES)),
            )
            .order_by(Order.packing_started_at, Order.order_id)
        ).scalars().all()
        return [OrderDTO.from_model(o) for o in rows]

    def picker_workload(self, picker_id: str) -> int:
        """Orders counted against the picker cap (PICKING only)."""
        return self.session.execute(
            select(func.count(Order.id)).where(
                Order.picker_id == picker_id,
                Order.status == OrderStatus.PICKING.value,
            )
        ).scalar_one()

    def status_counts(self) -> dict[str, int]:
        rows = self.session.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status)
        ).all()
        return {str(OrderStatus(status).value): count for status, count in sorted(rows)}

    def state_changes(self, order_id: str) -> list[OrderStateChangeDTO]:
        """The order's full status history, oldest first."""
        rows = self.session.execute(
            select(OrderStateChange)
            .where(OrderStateChange.order_id == order_id)
            .order_by(OrderStateChange.sequence)
        ).scalars().all()
        return [OrderStateChangeDTO.from_model(c) for c in rows]

    def next_pick_task(self, order_id: str) -> PickTaskDTO | None:
        """
        The first open pick task of a PICKING order, in line order.

        Skipped and completed tasks are passed over; None once nothing is
        left to pick (or the order is not being picked).
        """
        order = self.session.execute(
            select(Order).where(Order.order_id == order_id)
        ).scalar_one_or_none()
        if order is None or OrderStatus(order.status) != OrderStatus.PICKING:
            return None
        for item in order.active_items:
            if not item.pick_tasks:
                continue
            task = item.pick_tasks[-1]
            if task.status in INCOMPLETE_PICK_TASK_STATUSES:
                return PickTaskDTO.from_model(order.order_id, item, task)
        return None
