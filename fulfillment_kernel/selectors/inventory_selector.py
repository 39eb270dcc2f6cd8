"""
Module: fulfillment_kernel.selectors.inventory_selector
Responsibility: Read-only stock queries -- unit snapshots, availability per
    SKU, the transaction log, per-order outstanding reservations, and a
    replay of the log that audits the cached counters.
Architecture position: Kernel > Selectors.

Audit relevance:
    ``replay_counters`` recomputes on-hand and reserved for a (sku, bin)
    purely from InventoryTransaction rows.  For a unit whose stock arrived
    through the ledger the result equals the stored counters; a mismatch
    means a write bypassed InventoryLedger.
"""

from dataclasses import dataclass

from sqlalchemy import case, func, select

from fulfillment_kernel.domain.dtos import InventorySnapshot, InventoryTransactionDTO
from fulfillment_kernel.domain.statuses import (
    RESERVATION_TRANSACTION_TYPES,
    TransactionType,
)
from fulfillment_kernel.models.inventory import InventoryTransaction, InventoryUnit
from fulfillment_kernel.selectors.base import BaseSelector

_RESERVATION_TYPES = sorted(t.value for t in RESERVATION_TRANSACTION_TYPES)
_ON_HAND_TYPES = sorted(
    t.value
    for t in (TransactionType.RECEIPT, TransactionType.ADJUSTMENT, TransactionType.DEDUCTION)
)


@dataclass(frozen=True)
class ReplayedCounters:
    """On-hand and reserved as derived from the transaction log."""

    sku: str
    bin_location: str
    quantity_on_hand: int
    quantity_reserved: int

    def matches(self, snapshot: InventorySnapshot) -> bool:
        return (
            self.quantity_on_hand == snapshot.quantity_on_hand
            and self.quantity_reserved == snapshot.quantity_reserved
        )


class InventorySelector(BaseSelector[InventoryUnit]):
    """Stock read paths."""

    def get_unit(self, sku: str, bin_location: str) -> InventorySnapshot | None:
        unit = self.session.execute(
            select(InventoryUnit).where(
                InventoryUnit.sku == sku,
                InventoryUnit.bin_location == bin_location,
            )
        ).scalar_one_or_none()
        return InventorySnapshot.from_model(unit) if unit is not None else None

    def units_for_sku(self, sku: str) -> list[InventorySnapshot]:
        rows = self.session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.sku == sku)
            .order_by(InventoryUnit.bin_location)
        ).scalars().all()
        return [InventorySnapshot.from_model(u) for u in rows]

    def available(self, sku: str, bin_location: str | None = None) -> int:
        """Available units of ``sku``, in one bin or summed over all bins."""
        stmt = select(
            func.coalesce(
                func.sum(InventoryUnit.quantity_on_hand - InventoryUnit.quantity_reserved), 0
            )
        ).where(InventoryUnit.sku == sku)
        if bin_location is not None:
            stmt = stmt.where(InventoryUnit.bin_location == bin_location)
        return int(self.session.execute(stmt).scalar_one())

    def transactions(
        self,
        sku: str | None = None,
        bin_location: str | None = None,
        order_id: str | None = None,
    ) -> list[InventoryTransactionDTO]:
        stmt = select(InventoryTransaction)
        if sku is not None:
            stmt = stmt.where(InventoryTransaction.sku == sku)
        if bin_location is not None:
            stmt = stmt.where(InventoryTransaction.bin_location == bin_location)
        if order_id is not None:
            stmt = stmt.where(InventoryTransaction.order_id == order_id)
        stmt = stmt.order_by(InventoryTransaction.occurred_at, InventoryTransaction.sku)
        return [
            InventoryTransactionDTO.from_model(tx)
            for tx in self.session.execute(stmt).scalars().all()
        ]

    def outstanding_reservations(self, order_id: str) -> dict[tuple[str, str], int]:
        """Non-zero outstanding reservations of ``order_id`` by (sku, bin)."""
        rows = self.session.execute(
            select(
                InventoryTransaction.sku,
                InventoryTransaction.bin_location,
                func.sum(InventoryTransaction.quantity),
            )
            .where(
                InventoryTransaction.order_id == order_id,
                InventoryTransaction.transaction_type.in_(_RESERVATION_TYPES),
            )
            .group_by(InventoryTransaction.sku, InventoryTransaction.bin_location)
        ).all()
        return {(sku, b): int(total) for sku, b, total in sorted(rows) if total}

    def total_outstanding(self, order_id: str) -> int:
        return sum(self.outstanding_reservations(order_id).values())

    def replay_counters(self, sku: str, bin_location: str) -> ReplayedCounters:
        on_hand, reserved = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                InventoryTransaction.transaction_type.in_(_ON_HAND_TYPES),
                                InventoryTransaction.quantity,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                InventoryTransaction.transaction_type.in_(_RESERVATION_TYPES),
                                InventoryTransaction.quantity,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
            ).where(
                InventoryTransaction.sku == sku,
                InventoryTransaction.bin_location == bin_location,
            )
        ).one()
        return ReplayedCounters(sku, bin_location, int(on_hand), int(reserved))
