"""
ExceptionResolutionService -- resolve an exception and compensate for it.

Responsibility:
    Applies the supervisor's chosen resolution to an OrderException: runs
    the compensating ledger and line changes for that resolution, then
    walks the exception to RESOLVED.  Everything happens in the caller's
    transaction, so a failed compensation leaves the exception unresolved.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    FulfillmentOrchestrator.resolve_exception.  Delegates order cancellation
    to OrderService and pick completion to PickPackService.

Compensations (per line; "held" is the order's outstanding reservation for
the line's (sku, bin), capped at the line quantity):

    BACKORDER        release min(short, held), BackorderLine for the short
                     quantity, line quantity reduced or line BACKORDERED.
    SUBSTITUTE       unpicked remainder moved to the substitute (sku, bin);
                     picked units stay reserved where they were picked.
    CANCEL_ITEM      release held and any picks held at earlier keys,
                     line CANCELLED.
    CANCEL_ORDER     OrderService.cancel_locked.
    ADJUST_QUANTITY  reserve or release the delta when held.
    RETURN_TO_STOCK  un-pick the returned units; reservation kept, moved to
                     the current key for units picked at an earlier one.
    WRITE_OFF        un-pick, then per source (sku, bin): release, adjust
                     on-hand down, re-reserve at the current key.
    TRANSFER_BIN     as SUBSTITUTE, new bin only.
    CONTACT_CUSTOMER, MANUAL_OVERRIDE
                     no mutation.

Failure modes:
    - OrderExceptionNotFoundError / ExceptionClosedError.
    - ValidationError: unknown resolution, missing or bad ``extra`` values,
      MANUAL_OVERRIDE without notes, nothing left to compensate.
    - OrderStatusConflictError: line compensation on an order past picking.
    - OrderItemInactiveError: line compensation on a cancelled or
      backordered line.
    - InsufficientInventoryError: the new (sku, bin) cannot cover a move,
      or a write-off would take units other orders hold.

Locking:
    The order row is locked before the exception row, matching
    OrderService.cancel_locked, so the two never wait on each other.
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    Actor,
    BackorderLineDTO,
    LedgerResult,
    OrderDTO,
    OrderExceptionDTO,
    ResolutionResult,
)
from fulfillment_kernel.domain.statuses import (
    BackorderLineStatus,
    ExceptionResolution,
    OrderItemStatus,
    OrderStatus,
)
from fulfillment_kernel.exceptions import (
    InsufficientInventoryError,
    OrderItemInactiveError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.models.order_exception import BackorderLine, OrderException
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_access import lock_order, require_item, require_status
from fulfillment_kernel.services.order_progress import (
    carried_picks,
    picking_progress,
    split_pick_task,
    sync_pick_task,
    take_back_picks,
)
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.pick_pack_service import PickPackService

logger = get_logger("services.exception_resolution")

# Order statuses in which a line may still be reshaped.
LINE_MUTABLE_STATES = frozenset({OrderStatus.PENDING, OrderStatus.PICKING, OrderStatus.BACKORDER})

_NO_MUTATION = frozenset({ExceptionResolution.CONTACT_CUSTOMER, ExceptionResolution.MANUAL_OVERRIDE})


class _Compensation:
    """Mutable scratchpad for one resolve call."""

    def __init__(self) -> None:
        self.ledger_effects: list[LedgerResult] = []
        self.backorder_line: BackorderLine | None = None
        self.substitute_sku: str | None = None


def _extra_text(extra: Mapping[str, Any], key: str, required: bool = True) -> str | None:
    value = extra.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(key, f"{key} is required for this resolution")
        return None
    if not isinstance(value, str):
        raise ValidationError(key, f"must be a string, got {value!r}")
    return value.strip()


class ExceptionResolutionService:
    """
    Resolves exceptions with their compensating actions.

    Contract:
        ``resolve_exception`` either applies the compensation and marks the
        exception RESOLVED, or raises having changed nothing the caller's
        rollback would not undo.
    """

    def __init__(
        self,
        session: Session,
        exceptions: ExceptionService,
        ledger: InventoryLedger,
        orders: OrderService,
        pick_pack: PickPackService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._exceptions = exceptions
        self._ledger = ledger
        self._orders = orders
        self._pick_pack = pick_pack
        self._clock = clock or SystemClock()

    def resolve_exception(
        self,
        exception_id: str,
        resolution: ExceptionResolution | str,
        actor: Actor,
        notes: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> ResolutionResult:
        extra = extra or {}
        # order row before exception row, the same order cancel_order takes them in
        order = lock_order(self._session, self._exceptions.order_id_of(exception_id))
        exc = self._exceptions.lock(exception_id)
        self._exceptions.ensure_resolvable(exc)

        try:
            resolution = ExceptionResolution(resolution)
        except ValueError:
            raise ValidationError("resolution", f"unknown resolution {resolution!r}") from None
        if resolution is ExceptionResolution.MANUAL_OVERRIDE and not (notes and notes.strip()):
            raise ValidationError("notes", "a manual override needs notes")

        work = _Compensation()

        if resolution is ExceptionResolution.CANCEL_ORDER:
            self._orders.cancel_locked(
                order,
                actor,
                reason=notes or exc.reason,
                exclude_exception_id=exc.exception_id,
            )
        elif resolution not in _NO_MUTATION:
            item = self._line_for(exc, order, resolution)
            handler = getattr(self, f"_resolve_{resolution.value.lower()}")
            handler(exc, order, item, actor, extra, work)
            self._session.flush()

            if OrderStatus(order.status) == OrderStatus.PICKING:
                order.progress = picking_progress(order)
                self._pick_pack.maybe_complete_picking(order, actor)

        self._exceptions.complete_resolution(
            exc, resolution, actor, notes=notes, substitute_sku=work.substitute_sku
        )

        logger.info(
            "exception_compensation_applied",
            extra={
                "exception_id": exc.exception_id,
                "resolution": resolution.value,
                "ledger_effects": len(work.ledger_effects),
                "order_status": OrderStatus(order.status).value,
            },
        )
        return ResolutionResult(
            exception=OrderExceptionDTO.from_model(exc),
            order=OrderDTO.from_model(order),
            ledger_effects=tuple(work.ledger_effects),
            backorder_line=(
                BackorderLineDTO.from_model(work.backorder_line)
                if work.backorder_line is not None
                else None
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _line_for(
        self,
        exc: OrderException,
        order: Order,
        resolution: ExceptionResolution,
    ) -> OrderItem:
        if exc.order_item_id is None:
            raise ValidationError(
                "resolution",
                f"{resolution.value} needs a line; exception {exc.exception_id} is order-level",
            )
        require_status(order, f"resolve_{resolution.value.lower()}", LINE_MUTABLE_STATES)
        item = require_item(order, exc.order_item_id)
        if not item.is_active:
            raise OrderItemInactiveError(order.order_id, item.order_item_id, str(item.status))
        return item

    def _held(self, order: Order, item: OrderItem) -> int:
        held = self._ledger.outstanding_reservation(
            order.order_id, item.effective_sku, item.bin_location
        )
        return max(0, min(held, item.quantity))

    def _rekey(
        self,
        order: Order,
        item: OrderItem,
        to_sku: str,
        to_bin: str,
        actor: Actor,
        reason: str,
        work: _Compensation,
    ) -> None:
        """
        Point the line at a new (sku, bin) for its unpicked remainder.

        The held remainder's reservation moves with it.  Units already
        picked stay reserved where they were picked; a closed pick task
        records them there.
        """
        if item.remaining_to_pick <= 0:
            raise ValidationError(
                "resolution",
                f"line {item.order_item_id} is fully picked; nothing left to move",
            )
        moved = min(item.remaining_to_pick, self._held(order, item))
        if moved:
            from_key = (item.effective_sku, item.bin_location)
            self._ledger.lock_units([from_key, (to_sku, to_bin)])
            work.ledger_effects.append(
                self._ledger.release(*from_key, moved, order.order_id, actor, reason)
            )
            work.ledger_effects.append(
                self._ledger.reserve(to_sku, to_bin, moved, order.order_id, actor, reason)
            )
        split_pick_task(item, self._clock.now())
        item.bin_location = to_bin

    def _touch(self, item: OrderItem, actor: Actor) -> None:
        item.refresh_pick_status()
        item.updated_by_id = actor.user_id
        sync_pick_task(item, self._clock.now())

    # ------------------------------------------------------------------
    # Per-resolution compensations
    # ------------------------------------------------------------------

    def _resolve_backorder(self, exc, order, item, actor, extra, work):
        short = min(exc.quantity_short, item.remaining_to_pick)
        if short <= 0:
            raise ValidationError(
                "quantity_short",
                f"nothing to backorder: short {exc.quantity_short}, "
                f"remaining to pick {item.remaining_to_pick}",
            )

        released = min(short, self._held(order, item))
        if released:
            work.ledger_effects.append(
                self._ledger.release(
                    item.effective_sku, item.bin_location, released, order.order_id,
                    actor, reason=f"backorder {exc.exception_id}",
                )
            )

        line = BackorderLine(
            order_id=order.order_id,
            order_item_id=item.order_item_id,
            exception_id=exc.exception_id,
            sku=item.effective_sku,
            bin_location=item.bin_location,
            quantity=short,
            status=BackorderLineStatus.OPEN,
            created_by_id=actor.user_id,
        )
        self._session.add(line)
        work.backorder_line = line

        if short == item.quantity:
            item.status = OrderItemStatus.BACKORDERED
        else:
            item.quantity -= short
        self._touch(item, actor)

    def _resolve_substitute(self, exc, order, item, actor, extra, work):
        substitute_sku = _extra_text(extra, "substitute_sku", required=False) or exc.substitute_sku
        if not substitute_sku:
            raise ValidationError("substitute_sku", "substitute_sku is required for SUBSTITUTE")
        substitute_bin = _extra_text(extra, "substitute_bin", required=False) or item.bin_location
        if (substitute_sku, substitute_bin) == (item.effective_sku, item.bin_location):
            raise ValidationError("substitute_sku", "substitute matches the current sku and bin")

        self._rekey(
            order, item, substitute_sku, substitute_bin, actor,
            f"substitute {exc.exception_id}", work,
        )
        item.substitute_sku = substitute_sku
        work.substitute_sku = substitute_sku
        self._touch(item, actor)

    def _resolve_cancel_item(self, exc, order, item, actor, extra, work):
        reason = f"cancel item {exc.exception_id}"
        held = self._held(order, item)
        if held:
            work.ledger_effects.append(
                self._ledger.release(
                    item.effective_sku, item.bin_location, held, order.order_id, actor, reason
                )
            )
        for (sku, bin_location), picked in sorted(carried_picks(item).items()):
            held = self._ledger.outstanding_reservation(order.order_id, sku, bin_location)
            released = min(picked, held)
            if released:
                work.ledger_effects.append(
                    self._ledger.release(sku, bin_location, released, order.order_id, actor, reason)
                )
        item.status = OrderItemStatus.CANCELLED
        self._touch(item, actor)

    def _resolve_adjust_quantity(self, exc, order, item, actor, extra, work):
        new_quantity = extra.get("new_quantity")
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity <= 0:
            raise ValidationError("new_quantity", f"must be a positive integer, got {new_quantity!r}")
        if new_quantity < item.picked_quantity:
            raise ValidationError(
                "new_quantity",
                f"{new_quantity} is below the {item.picked_quantity} already picked",
            )
        delta = new_quantity - item.quantity
        if delta == 0:
            raise ValidationError("new_quantity", "quantity is unchanged")

        held = self._held(order, item)
        reason = f"adjust quantity {exc.exception_id}"
        if held and delta > 0:
            work.ledger_effects.append(
                self._ledger.reserve(
                    item.effective_sku, item.bin_location, delta, order.order_id, actor, reason
                )
            )
        elif held and delta < 0:
            work.ledger_effects.append(
                self._ledger.release(
                    item.effective_sku, item.bin_location, min(-delta, held),
                    order.order_id, actor, reason,
                )
            )
        item.quantity = new_quantity
        self._touch(item, actor)

    def _resolve_return_to_stock(self, exc, order, item, actor, extra, work):
        returned = min(exc.quantity_short, item.picked_quantity)
        if returned <= 0:
            raise ValidationError("quantity_short", "no picked units to return to the bin")
        work.ledger_effects.extend(
            self._pick_pack.return_picks(
                order, item, returned, actor, reason=f"return to stock {exc.exception_id}"
            )
        )

    def _resolve_write_off(self, exc, order, item, actor, extra, work):
        damaged = exc.quantity_short
        if damaged <= 0:
            raise ValidationError("quantity_short", "nothing to write off")

        # damaged picked units come off the bin they were picked from
        current = (item.effective_sku, item.bin_location)
        from_picked = min(damaged, item.picked_quantity)
        written_off: dict[tuple[str, str], int] = {}
        for key, share in take_back_picks(item, from_picked):
            written_off[key] = written_off.get(key, 0) + share
        if damaged > from_picked:
            written_off[current] = written_off.get(current, 0) + damaged - from_picked

        reason = f"write-off {exc.exception_id}"
        self._ledger.lock_units([*written_off, current])
        for (sku, bin_location), quantity in sorted(written_off.items()):
            held = self._ledger.outstanding_reservation(order.order_id, sku, bin_location)
            released = min(quantity, held, item.quantity)
            if released:
                work.ledger_effects.append(
                    self._ledger.release(sku, bin_location, released, order.order_id, actor, reason)
                )
            unit = self._ledger.lock_unit(sku, bin_location)
            if unit.available < quantity:
                # the rest of the bin is held by other orders
                raise InsufficientInventoryError(
                    sku=sku,
                    bin_location=bin_location,
                    requested=quantity,
                    available=unit.available,
                )
            work.ledger_effects.append(
                self._ledger.adjust(
                    sku, bin_location, -quantity, actor, reason, order_id=order.order_id
                )
            )
            if released:
                work.ledger_effects.append(
                    self._ledger.reserve(*current, released, order.order_id, actor, reason)
                )

        item.verified_quantity = min(item.verified_quantity, item.picked_quantity)
        self._touch(item, actor)

    def _resolve_transfer_bin(self, exc, order, item, actor, extra, work):
        new_bin = _extra_text(extra, "new_bin")
        if new_bin == item.bin_location:
            raise ValidationError("new_bin", f"line is already in bin {new_bin}")

        self._rekey(
            order, item, item.effective_sku, new_bin, actor,
            f"transfer bin {exc.exception_id}", work,
        )
        self._touch(item, actor)
