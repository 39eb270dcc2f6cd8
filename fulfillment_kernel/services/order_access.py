"""Locked loading of orders and lookups every order-mutating service shares."""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.statuses import OrderStatus
from fulfillment_kernel.exceptions import (
    OrderItemNotFoundError,
    OrderNotFoundError,
    OrderStatusConflictError,
)
from fulfillment_kernel.models.order import Order, OrderItem


def lock_order(session: Session, order_id: str) -> Order:
    """
    Load ``order_id`` with ``SELECT ... FOR UPDATE`` and fresh attributes.

    ``populate_existing`` discards whatever the identity map held, so the
    status seen by the caller is the committed one under the row lock.
    """
    order = session.execute(
        select(Order)
        .where(Order.order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def require_item(order: Order, order_item_id: str) -> OrderItem:
    item = order.find_item(order_item_id)
    if item is None:
        raise OrderItemNotFoundError(order.order_id, order_item_id)
    return item


def require_status(order: Order, action: str, allowed: Iterable[OrderStatus]) -> OrderStatus:
    """Return the order's status, or raise OrderStatusConflictError."""
    allowed = frozenset(allowed)
    current = OrderStatus(order.status)
    if current not in allowed:
        raise OrderStatusConflictError(
            order_id=order.order_id,
            current_status=current.value,
            action=action,
            expected=[s.value for s in allowed],
        )
    return current
