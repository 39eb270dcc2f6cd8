"""
Derived order state: stage progress and pick-task bookkeeping.

Progress is the completion of the current stage over active lines:
floor(picked / ordered * 100) while picking, floor(verified / ordered * 100)
while packing.  A PickTask mirrors its line's pick state; these helpers
are the only place that derives one from the other.

A line moved to a new (sku, bin) after partial picking keeps one closed
task per earlier key.  Those tasks record where the units were picked, so
un-picking them can move the matching reservation to the current key.
"""

from datetime import datetime

from fulfillment_kernel.domain.statuses import PickTaskStatus
from fulfillment_kernel.models.order import Order, OrderItem, PickTask


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, (100 * done) // total)


def picking_progress(order: Order) -> int:
    active = order.active_items
    return _percent(
        sum(item.picked_quantity for item in active),
        sum(item.quantity for item in active),
    )


def packing_progress(order: Order) -> int:
    active = order.active_items
    return _percent(
        sum(item.verified_quantity for item in active),
        sum(item.quantity for item in active),
    )


def open_pick_task_count(order: Order) -> int:
    return sum(1 for item in order.active_items if item.open_pick_task is not None)


def _carried(item: OrderItem) -> int:
    """Picked units held by earlier tasks, i.e. picked at an earlier (sku, bin)."""
    return sum(task.picked_quantity for task in item.pick_tasks[:-1])


def create_pick_task(item: OrderItem, picker_id: str) -> PickTask:
    carried = sum(task.picked_quantity for task in item.pick_tasks)
    task = PickTask(
        picker_id=picker_id,
        sku=item.effective_sku,
        bin_location=item.bin_location,
        quantity=item.quantity - carried,
        picked_quantity=item.picked_quantity - carried,
        status=PickTaskStatus.PENDING,
        created_seq=item.pick_tasks[-1].created_seq + 1 if item.pick_tasks else 0,
    )
    item.pick_tasks.append(task)
    return task


def split_pick_task(item: OrderItem, now: datetime) -> PickTask | None:
    """
    Close the latest task at what it has picked before the line moves.

    Called before a line is re-keyed to a new (sku, bin).  The closed task
    keeps its key and picked count; a fresh task carries the remainder.
    A task with nothing picked is simply re-keyed by ``sync_pick_task``.
    """
    if not item.pick_tasks:
        return None
    task = item.pick_tasks[-1]
    if task.picked_quantity == 0:
        return task
    task.quantity = task.picked_quantity
    task.status = PickTaskStatus.COMPLETED
    task.completed_at = now
    return create_pick_task(item, task.picker_id)


def carried_picks(item: OrderItem) -> dict[tuple[str, str], int]:
    """Units picked at a (sku, bin) other than the line's current one."""
    current = (item.effective_sku, item.bin_location)
    carried: dict[tuple[str, str], int] = {}
    for task in item.pick_tasks[:-1]:
        key = (task.sku, task.bin_location)
        if task.picked_quantity and key != current:
            carried[key] = carried.get(key, 0) + task.picked_quantity
    return carried


def take_back_picks(item: OrderItem, quantity: int) -> list[tuple[tuple[str, str], int]]:
    """
    Un-pick ``quantity`` units, newest picks first.

    Returns the (sku, bin) each share was picked from.  Earlier tasks are
    shrunk, and dropped once empty; the caller re-syncs the latest task.
    """
    taken: list[tuple[tuple[str, str], int]] = []
    current = (item.effective_sku, item.bin_location)
    remaining = quantity

    latest_share = min(remaining, item.picked_quantity - _carried(item))
    if latest_share > 0:
        taken.append((current, latest_share))
        remaining -= latest_share

    for task in reversed(item.pick_tasks[:-1]):
        if remaining == 0:
            break
        share = min(remaining, task.picked_quantity)
        if share == 0:
            continue
        task.picked_quantity -= share
        task.quantity -= share
        if task.quantity == 0:
            item.pick_tasks.remove(task)
        taken.append(((task.sku, task.bin_location), share))
        remaining -= share

    if remaining:
        taken.append((current, remaining))
    item.picked_quantity -= quantity
    return taken


def sync_pick_task(item: OrderItem, now: datetime) -> PickTask | None:
    """Mirror the line's current share onto its latest pick task; returns the task, if any."""
    if not item.pick_tasks:
        return None
    task = item.pick_tasks[-1]
    carried = _carried(item)
    task.sku = item.effective_sku
    task.bin_location = item.bin_location
    task.quantity = max(0, item.quantity - carried)
    task.picked_quantity = min(max(0, item.picked_quantity - carried), task.quantity)

    if not item.is_active:
        task.status = PickTaskStatus.SKIPPED
        task.completed_at = task.completed_at or now
    elif task.picked_quantity >= task.quantity:
        task.status = PickTaskStatus.COMPLETED
        task.completed_at = now
    elif task.picked_quantity > 0:
        task.status = PickTaskStatus.IN_PROGRESS
        task.started_at = task.started_at or now
        task.completed_at = None
    else:
        task.status = PickTaskStatus.PENDING
        task.completed_at = None
    return task
