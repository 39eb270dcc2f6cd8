"""
Kernel Invariants Contract.

These invariants are structural law for the fulfillment core. They are
hardcoded in the inventory ledger, the order state machine, the ORM
immutability listeners and the database constraints. No configuration
value may switch them off.

This module exists solely to declare these invariants explicitly so that
InvariantViolationError and the immutability layer can name the rule they
enforce.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    STOCK_NON_NEGATIVE = "stock_non_negative"
    """On-hand quantity never drops below zero. Enforced by InventoryLedger
    before flush and by a CHECK constraint."""

    RESERVATION_BOUNDED = "reservation_bounded"
    """0 <= reserved <= on-hand for every InventoryUnit, so available is
    never negative. Enforced by InventoryLedger under a row lock and by a
    CHECK constraint."""

    RESERVATION_OWNERSHIP = "reservation_ownership"
    """An order may only release or deduct what it has itself reserved for
    the same (sku, bin). Enforced by InventoryLedger from the transaction
    log."""

    PICK_BOUNDED = "pick_bounded"
    """0 <= picked <= ordered and 0 <= verified <= picked on every line.
    Enforced by PickPackService and CHECK constraints."""

    PROGRESS_BOUNDED = "progress_bounded"
    """Order progress stays within [0, 100]."""

    WORKER_ASSIGNMENT = "worker_assignment"
    """A picker is assigned whenever the order is PICKING or PICKED, a
    packer whenever it is PACKING or PACKED."""

    TERMINAL_FROZEN = "terminal_frozen"
    """SHIPPED and CANCELLED orders accept no further mutation. Enforced by
    the state machine and the ORM immutability listeners."""

    CANCEL_RELEASES_ALL = "cancel_releases_all"
    """A cancelled order holds no outstanding reservation once the cancelling
    transaction commits."""

    AUDIT_APPEND_ONLY = "audit_append_only"
    """InventoryTransaction and OrderStateChange rows are never updated or
    deleted. Enforced by ORM listeners and PostgreSQL triggers."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = ("fulfillment_config",)
