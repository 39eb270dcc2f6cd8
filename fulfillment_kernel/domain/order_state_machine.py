"""
Order State Machine -- the legal transition graph and per-edge prerequisites.

Responsibility:
    Encodes which order status transitions are legal and what must be true
    before each one is committed.  Services gather the facts (picker load,
    stock availability, line completeness) into a ``TransitionContext`` and
    ask this module for a verdict; they never hand-roll status checks.

Architecture position:
    Kernel > Domain -- pure functions, ZERO I/O.  No imports from db/,
    models/, services/ or selectors/.

Invariants enforced:
    terminal_frozen   -- SHIPPED and CANCELLED have no outgoing edges.
    worker_assignment -- PICKING requires a picker, PACKING a packer.
    Exhaustiveness    -- every OrderStatus member has an entry in
                         TRANSITIONS; checked at import time.

Failure modes:
    - InvalidTransitionError: the edge is not in the table.  Carries the
      attempted edge and the legal alternatives.
    - PrerequisiteFailedError: the edge is legal, its prerequisites are not.
      PickerCapacityExceededError is the capacity-specific subclass.
    - InsufficientInventoryError: a PICKING prerequisite failed because a
      line's (sku, bin) cannot cover the requested quantity.

Audit relevance:
    Because this module is pure, the same verdicts can be replayed against
    historical OrderStateChange rows to verify that every recorded edge was
    legal.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from fulfillment_kernel.domain.statuses import OrderStatus
from fulfillment_kernel.exceptions import (
    InsufficientInventoryError,
    InvalidTransitionError,
    PickerCapacityExceededError,
    PrerequisiteFailedError,
)

S = OrderStatus

TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = MappingProxyType({
    S.PENDING: frozenset({S.PICKING, S.CANCELLED, S.BACKORDER}),
    S.PICKING: frozenset({S.PICKED, S.CANCELLED}),
    S.PICKED: frozenset({S.PACKING}),
    S.PACKING: frozenset({S.PACKED}),
    S.PACKED: frozenset({S.SHIPPED}),
    S.BACKORDER: frozenset({S.PENDING}),
    S.SHIPPED: frozenset(),
    S.CANCELLED: frozenset(),
})

# Compensating edges outside the forward graph, keyed to the action name.
ROLLBACK_TRANSITIONS: Mapping[tuple[OrderStatus, OrderStatus], str] = MappingProxyType({
    (S.PICKING, S.PENDING): "unclaim",
    (S.PACKING, S.PICKED): "unclaim_packing",
})

INITIAL_STATE = S.PENDING
TERMINAL_STATES: frozenset[OrderStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)
CANCELLABLE_STATES: frozenset[OrderStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if S.CANCELLED in targets
)
PICKER_REQUIRED_STATES: frozenset[OrderStatus] = frozenset({S.PICKING, S.PICKED})
PACKER_REQUIRED_STATES: frozenset[OrderStatus] = frozenset({S.PACKING, S.PACKED})

_missing = set(OrderStatus) - set(TRANSITIONS)
assert not _missing, f"TRANSITIONS has no entry for {sorted(_missing)}"


def is_valid_transition(from_status: OrderStatus | str, to_status: OrderStatus | str) -> bool:
    """True iff ``from_status -> to_status`` is in the forward table."""
    return OrderStatus(to_status) in TRANSITIONS[OrderStatus(from_status)]


def next_states(from_status: OrderStatus | str) -> frozenset[OrderStatus]:
    """The set of statuses reachable in one forward step."""
    return TRANSITIONS[OrderStatus(from_status)]


def validate_transition(from_status: OrderStatus | str, to_status: OrderStatus | str) -> None:
    """Raise InvalidTransitionError unless the edge is in the forward table."""
    source, target = OrderStatus(from_status), OrderStatus(to_status)
    if target not in TRANSITIONS[source]:
        raise InvalidTransitionError(
            from_status=source.value,
            to_status=target.value,
            allowed=[s.value for s in TRANSITIONS[source]],
        )


def validate_rollback(from_status: OrderStatus | str, to_status: OrderStatus | str) -> str:
    """Validate a compensating edge and return its action name."""
    source, target = OrderStatus(from_status), OrderStatus(to_status)
    action = ROLLBACK_TRANSITIONS.get((source, target))
    if action is None:
        raise InvalidTransitionError(
            from_status=source.value,
            to_status=target.value,
            allowed=[t.value for (f, t) in ROLLBACK_TRANSITIONS if f == source],
        )
    return action


# =============================================================================
# Prerequisites
# =============================================================================


@dataclass(frozen=True)
class LineAvailability:
    """Stock facts for one order line, read under a row lock."""

    sku: str
    bin_location: str
    requested: int
    available: int

    @property
    def is_short(self) -> bool:
        return self.available < self.requested


@dataclass(frozen=True)
class TransitionContext:
    """
    Facts a prerequisite check needs, gathered by the calling service.

    Only the fields relevant to the target status are consulted; the rest
    keep their defaults.
    """

    picker_id: str | None = None
    picker_active: bool = False
    picker_active_orders: int = 0
    max_orders_per_picker: int = 10
    line_availability: tuple[LineAvailability, ...] = ()
    all_lines_picked: bool = False
    incomplete_pick_tasks: int = 0
    packer_id: str | None = None
    packer_active: bool = False
    packer_active_orders: int = 0
    max_orders_per_packer: int = 5
    all_lines_verified: bool = False
    shipping_method: str | None = None
    carrier: str | None = None
    reason: str | None = None
    outstanding_reservation: int = 0


def _picking_failures(ctx: TransitionContext) -> list[str]:
    failures = []
    if not ctx.picker_id:
        failures.append("picker id is required")
    elif not ctx.picker_active:
        failures.append(f"picker {ctx.picker_id} is not active")
    return failures


def _check_picking(ctx: TransitionContext) -> None:
    failures = _picking_failures(ctx)
    if failures:
        raise PrerequisiteFailedError(S.PICKING.value, failures)
    if ctx.picker_active_orders >= ctx.max_orders_per_picker:
        raise PickerCapacityExceededError(
            picker_id=ctx.picker_id,
            active_count=ctx.picker_active_orders,
            max_active=ctx.max_orders_per_picker,
        )
    for line in ctx.line_availability:
        if line.is_short:
            raise InsufficientInventoryError(
                sku=line.sku,
                bin_location=line.bin_location,
                requested=line.requested,
                available=line.available,
            )


def prerequisite_failures(to_status: OrderStatus | str, ctx: TransitionContext) -> list[str]:
    """
    Return every failed prerequisite for entering ``to_status``.

    An empty list means the transition may proceed.  For PICKING this also
    reports capacity and availability shortfalls as plain messages.
    """
    target = OrderStatus(to_status)
    failures: list[str] = []
    match target:
        case S.PICKING:
            failures.extend(_picking_failures(ctx))
            if ctx.picker_active_orders >= ctx.max_orders_per_picker:
                failures.append(
                    f"picker {ctx.picker_id} has {ctx.picker_active_orders} active "
                    f"orders (max {ctx.max_orders_per_picker})"
                )
            for line in ctx.line_availability:
                if line.is_short:
                    failures.append(
                        f"SKU {line.sku} in bin {line.bin_location}: requested "
                        f"{line.requested}, available {line.available}"
                    )
        case S.PICKED:
            if not ctx.all_lines_picked:
                failures.append("not every line is fully picked")
            if ctx.incomplete_pick_tasks:
                failures.append(f"{ctx.incomplete_pick_tasks} pick task(s) still open")
        case S.PACKING:
            if not ctx.packer_id:
                failures.append("packer id is required")
            elif not ctx.packer_active:
                failures.append(f"packer {ctx.packer_id} is not active")
            if ctx.packer_id and ctx.packer_active_orders >= ctx.max_orders_per_packer:
                failures.append(
                    f"packer {ctx.packer_id} has {ctx.packer_active_orders} active "
                    f"orders (max {ctx.max_orders_per_packer})"
                )
        case S.PACKED:
            if not ctx.all_lines_verified:
                failures.append("not every line is verified")
        case S.SHIPPED:
            if not (ctx.shipping_method and ctx.shipping_method.strip()):
                failures.append("shipping method is required")
            if not (ctx.carrier and ctx.carrier.strip()):
                failures.append("carrier is required")
        case S.CANCELLED:
            if ctx.outstanding_reservation:
                failures.append(
                    f"{ctx.outstanding_reservation} reserved unit(s) not released"
                )
        case S.BACKORDER:
            if not (ctx.reason and ctx.reason.strip()):
                failures.append("a backorder reason is required")
        case S.PENDING:
            pass
    return failures


def check_prerequisites(to_status: OrderStatus | str, ctx: TransitionContext) -> None:
    """
    Raise if any prerequisite for entering ``to_status`` fails.

    PICKING raises the most specific error first: missing/inactive picker
    (PrerequisiteFailedError), then capacity (PickerCapacityExceededError),
    then the first short line (InsufficientInventoryError).  Every other
    target raises PrerequisiteFailedError listing all failures.
    """
    target = OrderStatus(to_status)
    if target is S.PICKING:
        _check_picking(ctx)
        return
    failures = prerequisite_failures(target, ctx)
    if failures:
        raise PrerequisiteFailedError(target.value, failures)
