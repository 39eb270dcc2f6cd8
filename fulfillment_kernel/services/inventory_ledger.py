"""
InventoryLedger -- the only writer of on-hand and reserved stock counters.

Responsibility:
    Reserves, deducts, releases, adjusts and receives stock for one
    (sku, bin) at a time.  Every call locks the InventoryUnit row with
    ``SELECT ... FOR UPDATE``, mutates the counters, and appends exactly one
    InventoryTransaction in the same flush.

Architecture position:
    Kernel > Services -- imperative shell.  Called by AllocationService
    (claim/unclaim), PickPackService (ship), OrderService (cancel) and
    ExceptionResolutionService (compensations).  Never commits.

Invariants enforced:
    stock_non_negative     -- on-hand never drops below zero.
    reservation_bounded    -- 0 <= reserved <= on-hand after every call.
    reservation_ownership  -- an order releases or deducts at most what its
                              own transaction log says it still holds for
                              the (sku, bin).

Failure modes:
    - ValidationError: non-positive quantity, zero delta, missing reason.
    - InventoryUnitNotFoundError: no InventoryUnit for the (sku, bin).
    - InsufficientInventoryError: reserve() with available < requested.
    - InvariantViolationError: any call that would break an invariant
      above.  Raised before anything is flushed.

Audit relevance:
    The counters are a cache of the transaction log.  Per order, the
    outstanding reservation for a (sku, bin) is the sum of its
    RESERVATION, CANCELLATION and DEDUCTION quantities, so no separate
    reservation table exists to drift out of sync.
"""

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor, InventorySnapshot, LedgerResult
from fulfillment_kernel.domain.statuses import (
    RESERVATION_TRANSACTION_TYPES,
    TransactionType,
)
from fulfillment_kernel.exceptions import (
    InsufficientInventoryError,
    InvariantViolationError,
    InventoryUnitNotFoundError,
    ValidationError,
)
from fulfillment_kernel.invariants import KernelInvariant
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.inventory import InventoryTransaction, InventoryUnit
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.inventory_ledger")

UnitKey = tuple[str, str]

_RESERVATION_TYPE_VALUES = sorted(t.value for t in RESERVATION_TRANSACTION_TYPES)


def _require_positive(name: str, quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(name, f"must be a positive integer, got {quantity!r}")


class InventoryLedger(BaseService[InventoryUnit]):
    """
    Row-locked stock counters with an append-only transaction log.

    Contract:
        Every public mutator locks the unit, validates, applies, appends one
        InventoryTransaction, flushes, and returns a frozen LedgerResult.

    Guarantees:
        - 0 <= reserved <= on_hand holds after every call.
        - Units touched together are locked in sorted (sku, bin) order.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT decide which orders may reserve; that is admission
          control in AllocationService.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _select_for_update(self, sku: str, bin_location: str) -> InventoryUnit | None:
        return self.session.execute(
            select(InventoryUnit)
            .where(
                InventoryUnit.sku == sku,
                InventoryUnit.bin_location == bin_location,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_unit(self, sku: str, bin_location: str) -> InventoryUnit:
        """Lock one unit FOR UPDATE.  Raises InventoryUnitNotFoundError."""
        unit = self._select_for_update(sku, bin_location)
        if unit is None:
            raise InventoryUnitNotFoundError(sku, bin_location)
        return unit

    def lock_units(self, keys: Iterable[UnitKey]) -> dict[UnitKey, InventoryUnit]:
        """
        Lock several units in sorted (sku, bin) order.

        Missing units are absent from the result; the caller decides whether
        that is a shortfall or an error.
        """
        locked: dict[UnitKey, InventoryUnit] = {}
        for sku, bin_location in sorted(set(keys)):
            unit = self._select_for_update(sku, bin_location)
            if unit is not None:
                locked[(sku, bin_location)] = unit
        return locked

    # ------------------------------------------------------------------
    # Per-order reservation, derived from the log
    # ------------------------------------------------------------------

    def outstanding_reservation(self, order_id: str, sku: str, bin_location: str) -> int:
        """Units of (sku, bin) still reserved by ``order_id``."""
        total = self.session.execute(
            select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
                InventoryTransaction.order_id == order_id,
                InventoryTransaction.sku == sku,
                InventoryTransaction.bin_location == bin_location,
                InventoryTransaction.transaction_type.in_(_RESERVATION_TYPE_VALUES),
            )
        ).scalar_one()
        return int(total)

    def outstanding_reservations(self, order_id: str) -> dict[UnitKey, int]:
        """Every non-zero outstanding reservation of ``order_id``, by (sku, bin)."""
        rows = self.session.execute(
            select(
                InventoryTransaction.sku,
                InventoryTransaction.bin_location,
                func.sum(InventoryTransaction.quantity),
            )
            .where(
                InventoryTransaction.order_id == order_id,
                InventoryTransaction.transaction_type.in_(_RESERVATION_TYPE_VALUES),
            )
            .group_by(InventoryTransaction.sku, InventoryTransaction.bin_location)
        ).all()
        return {
            (sku, bin_location): int(total)
            for sku, bin_location, total in sorted(rows)
            if total
        }

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def reserve(
        self,
        sku: str,
        bin_location: str,
        quantity: int,
        order_id: str,
        actor: Actor,
        reason: str | None = None,
    ) -> LedgerResult:
        """
        Reserve ``quantity`` units for ``order_id``.

        Raises:
            ValidationError: quantity <= 0.
            InventoryUnitNotFoundError: unknown (sku, bin).
            InsufficientInventoryError: available < quantity.
        """
        _require_positive("quantity", quantity)
        unit = self.lock_unit(sku, bin_location)

        if unit.available < quantity:
            logger.warning(
                "reservation_rejected_insufficient",
                extra={
                    "sku": sku,
                    "bin_location": bin_location,
                    "requested": quantity,
                    "available": unit.available,
                },
            )
            raise InsufficientInventoryError(
                sku=sku,
                bin_location=bin_location,
                requested=quantity,
                available=unit.available,
            )

        self._apply(unit, actor, reserved_delta=quantity)
        return self._record(
            unit, TransactionType.RESERVATION, quantity, actor, order_id, reason,
            event="reservation_created",
        )

    def deduct(
        self,
        sku: str,
        bin_location: str,
        quantity: int,
        order_id: str,
        actor: Actor,
        reason: str | None = None,
    ) -> LedgerResult:
        """Consume reserved units on shipment: on-hand and reserved both drop."""
        _require_positive("quantity", quantity)
        unit = self.lock_unit(sku, bin_location)
        self._check_owned(order_id, sku, bin_location, quantity, "deduct")

        self._apply(unit, actor, on_hand_delta=-quantity, reserved_delta=-quantity)
        return self._record(
            unit, TransactionType.DEDUCTION, -quantity, actor, order_id, reason,
            event="reservation_deducted",
        )

    def release(
        self,
        sku: str,
        bin_location: str,
        quantity: int,
        order_id: str,
        actor: Actor,
        reason: str | None = None,
    ) -> LedgerResult:
        """Return reserved units to available without moving on-hand."""
        _require_positive("quantity", quantity)
        unit = self.lock_unit(sku, bin_location)
        self._check_owned(order_id, sku, bin_location, quantity, "release")

        self._apply(unit, actor, reserved_delta=-quantity)
        return self._record(
            unit, TransactionType.CANCELLATION, -quantity, actor, order_id, reason,
            event="reservation_released",
        )

    def adjust(
        self,
        sku: str,
        bin_location: str,
        delta: int,
        actor: Actor,
        reason: str,
        order_id: str | None = None,
    ) -> LedgerResult:
        """
        Correct on-hand by ``delta`` (cycle count, damage write-off).

        Raises:
            ValidationError: delta == 0 or reason empty.
            InvariantViolationError: on-hand would drop below zero or below
                the reserved quantity.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta", f"must be a non-zero integer, got {delta!r}")
        if not (reason and reason.strip()):
            raise ValidationError("reason", "an adjustment reason is required")

        unit = self.lock_unit(sku, bin_location)
        self._apply(unit, actor, on_hand_delta=delta)
        return self._record(
            unit, TransactionType.ADJUSTMENT, delta, actor, order_id, reason,
            event="inventory_adjusted",
        )

    def receive(
        self,
        sku: str,
        bin_location: str,
        quantity: int,
        actor: Actor,
        reason: str | None = None,
    ) -> LedgerResult:
        """Book inbound stock, creating the InventoryUnit on first receipt."""
        _require_positive("quantity", quantity)
        if not (sku and bin_location):
            raise ValidationError("sku", "sku and bin_location are required")

        unit = self._select_for_update(sku, bin_location)
        if unit is None:
            unit = self._create_unit(sku, bin_location, actor)

        self._apply(unit, actor, on_hand_delta=quantity)
        return self._record(
            unit, TransactionType.RECEIPT, quantity, actor, None, reason,
            event="inventory_received",
        )

    def release_all(self, order_id: str, actor: Actor, reason: str | None = None) -> list[LedgerResult]:
        """Release every outstanding reservation of the order, in lock order."""
        return [
            self.release(sku, bin_location, quantity, order_id, actor, reason)
            for (sku, bin_location), quantity in self.outstanding_reservations(order_id).items()
            if quantity > 0
        ]

    def deduct_all(self, order_id: str, actor: Actor, reason: str | None = None) -> list[LedgerResult]:
        """Deduct every outstanding reservation of the order, in lock order."""
        return [
            self.deduct(sku, bin_location, quantity, order_id, actor, reason)
            for (sku, bin_location), quantity in self.outstanding_reservations(order_id).items()
            if quantity > 0
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create_unit(self, sku: str, bin_location: str, actor: Actor) -> InventoryUnit:
        # Concurrent first receipts race on uq_inventory_sku_bin; the loser
        # rolls back its savepoint and locks the winner's row.
        savepoint = self.session.begin_nested()
        try:
            unit = InventoryUnit(
                sku=sku,
                bin_location=bin_location,
                quantity_on_hand=0,
                quantity_reserved=0,
                created_by_id=actor.user_id,
            )
            self.session.add(unit)
            self.session.flush()
            savepoint.commit()
            logger.info(
                "inventory_unit_created",
                extra={"sku": sku, "bin_location": bin_location},
            )
            return unit
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "inventory_unit_create_race_retry",
                extra={"sku": sku, "bin_location": bin_location},
            )
            return self.lock_unit(sku, bin_location)

    def _check_owned(
        self, order_id: str, sku: str, bin_location: str, quantity: int, operation: str
    ) -> None:
        held = self.outstanding_reservation(order_id, sku, bin_location)
        if quantity > held:
            raise InvariantViolationError(
                KernelInvariant.RESERVATION_OWNERSHIP.value,
                f"order {order_id} cannot {operation} {quantity} of {sku}@{bin_location}; "
                f"it holds {held}",
                order_id=order_id,
                sku=sku,
                bin_location=bin_location,
                requested=quantity,
                held=held,
            )

    def _apply(
        self,
        unit: InventoryUnit,
        actor: Actor,
        on_hand_delta: int = 0,
        reserved_delta: int = 0,
    ) -> None:
        new_on_hand = unit.quantity_on_hand + on_hand_delta
        new_reserved = unit.quantity_reserved + reserved_delta

        if new_on_hand < 0:
            raise InvariantViolationError(
                KernelInvariant.STOCK_NON_NEGATIVE.value,
                f"on-hand for {unit.sku}@{unit.bin_location} would become {new_on_hand}",
                sku=unit.sku,
                bin_location=unit.bin_location,
                on_hand=unit.quantity_on_hand,
                delta=on_hand_delta,
            )
        if new_reserved < 0 or new_reserved > new_on_hand:
            raise InvariantViolationError(
                KernelInvariant.RESERVATION_BOUNDED.value,
                f"reserved {new_reserved} outside [0, {new_on_hand}] for "
                f"{unit.sku}@{unit.bin_location}",
                sku=unit.sku,
                bin_location=unit.bin_location,
                on_hand=new_on_hand,
                reserved=new_reserved,
            )

        unit.quantity_on_hand = new_on_hand
        unit.quantity_reserved = new_reserved
        unit.updated_by_id = actor.user_id

    def _record(
        self,
        unit: InventoryUnit,
        transaction_type: TransactionType,
        quantity: int,
        actor: Actor,
        order_id: str | None,
        reason: str | None,
        event: str,
    ) -> LedgerResult:
        self.session.add(
            InventoryTransaction(
                transaction_type=transaction_type,
                sku=unit.sku,
                bin_location=unit.bin_location,
                quantity=quantity,
                order_id=order_id,
                actor_id=actor.user_id,
                actor_role=actor.role,
                reason=reason,
                occurred_at=self._clock.now(),
            )
        )
        self.session.flush()

        # INVARIANT: reservation_bounded -- post-condition of every call
        assert 0 <= unit.quantity_reserved <= unit.quantity_on_hand, (
            f"reservation_bounded violated for {unit.sku}@{unit.bin_location}"
        )

        logger.info(
            event,
            extra={
                "transaction_type": transaction_type.value,
                "sku": unit.sku,
                "bin_location": unit.bin_location,
                "quantity": quantity,
                "order_id": order_id,
                "on_hand": unit.quantity_on_hand,
                "reserved": unit.quantity_reserved,
            },
        )

        return LedgerResult(
            transaction_type=transaction_type,
            sku=unit.sku,
            bin_location=unit.bin_location,
            quantity=quantity,
            order_id=order_id,
            unit=InventorySnapshot.from_model(unit),
        )
