"""
Canonical workflow types (``fulfillment_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing the two lifecycles of the kernel -- the order
and the order exception -- as declarative state machines.  The order
workflow is derived from ``order_state_machine.TRANSITIONS`` so the two can
never drift; the exception workflow is the single definition its service
validates against.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass

from fulfillment_kernel.domain.order_state_machine import (
    INITIAL_STATE,
    ROLLBACK_TRANSITIONS,
    TERMINAL_STATES,
    TRANSITIONS,
)
from fulfillment_kernel.domain.statuses import ExceptionStatus, OrderStatus
from fulfillment_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``compensating=True`` marks a rollback edge (unclaim) that undoes a
    forward step rather than advancing the lifecycle.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    compensating: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t.action} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state} has an outgoing edge")

    def targets_from(self, state: str, include_compensating: bool = False) -> frozenset[str]:
        return frozenset(
            t.to_state
            for t in self.transitions
            if t.from_state == state and (include_compensating or not t.compensating)
        )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def require(self, from_state: str, to_state: str) -> Transition:
        """Return the transition or raise InvalidTransitionError."""
        transition = self.find(from_state, to_state)
        if transition is None:
            raise InvalidTransitionError(
                from_status=str(from_state),
                to_status=str(to_state),
                allowed=self.targets_from(from_state, include_compensating=True),
                entity_type=self.name,
            )
        return transition


# =============================================================================
# Order lifecycle
# =============================================================================

_ORDER_GUARDS = {
    OrderStatus.PICKING: Guard(
        "picking_admission",
        "picker supplied and active, below active-order cap, every line available",
    ),
    OrderStatus.PICKED: Guard("all_lines_picked", "every active line fully picked, no open pick tasks"),
    OrderStatus.PACKING: Guard("packer_admission", "packer supplied and active, below active-order cap"),
    OrderStatus.PACKED: Guard("all_lines_verified", "every active line verified"),
    OrderStatus.SHIPPED: Guard("shipping_confirmed", "shipping method and carrier present"),
    OrderStatus.CANCELLED: Guard("reservations_released", "no outstanding reservation after release"),
    OrderStatus.BACKORDER: Guard("reason_supplied", "non-empty backorder reason"),
}

_ORDER_ACTIONS = {
    OrderStatus.PICKING: "claim",
    OrderStatus.PICKED: "complete_picking",
    OrderStatus.PACKING: "claim_for_packing",
    OrderStatus.PACKED: "complete_packing",
    OrderStatus.SHIPPED: "ship",
    OrderStatus.CANCELLED: "cancel",
    OrderStatus.BACKORDER: "backorder",
    OrderStatus.PENDING: "release_backorder",
}

ORDER_WORKFLOW = Workflow(
    name="Order",
    description="Warehouse order fulfillment lifecycle",
    initial_state=INITIAL_STATE.value,
    states=tuple(s.value for s in OrderStatus),
    transitions=tuple(
        Transition(
            from_state=source.value,
            to_state=target.value,
            action=_ORDER_ACTIONS[target],
            guard=_ORDER_GUARDS.get(target),
        )
        for source in OrderStatus
        for target in sorted(TRANSITIONS[source], key=lambda s: s.value)
    )
    + tuple(
        Transition(
            from_state=source.value,
            to_state=target.value,
            action=action,
            compensating=True,
        )
        for (source, target), action in ROLLBACK_TRANSITIONS.items()
    ),
    terminal_states=tuple(s.value for s in sorted(TERMINAL_STATES, key=lambda s: s.value)),
)


# =============================================================================
# Order exception lifecycle
# =============================================================================

E = ExceptionStatus

ORDER_EXCEPTION_WORKFLOW = Workflow(
    name="OrderException",
    description="Fulfillment discrepancy review and resolution",
    initial_state=E.OPEN.value,
    states=tuple(s.value for s in ExceptionStatus),
    transitions=(
        Transition(E.OPEN.value, E.REVIEWING.value, "start_review"),
        Transition(E.REVIEWING.value, E.APPROVED.value, "approve"),
        Transition(E.REVIEWING.value, E.REJECTED.value, "reject"),
        Transition(E.APPROVED.value, E.RESOLVED.value, "resolve"),
        Transition(E.REJECTED.value, E.RESOLVED.value, "resolve"),
        Transition(E.OPEN.value, E.CANCELLED.value, "cancel"),
        Transition(E.REVIEWING.value, E.CANCELLED.value, "cancel"),
    ),
    terminal_states=(E.RESOLVED.value, E.CANCELLED.value),
)

EXCEPTION_OPEN_STATES: frozenset[ExceptionStatus] = frozenset({E.OPEN, E.REVIEWING})
