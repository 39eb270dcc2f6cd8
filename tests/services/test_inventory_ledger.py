"""
Tests for InventoryLedger -- row-locked counters plus the append-only log.

Covers:
- receive(): unit creation on first receipt, RECEIPT row
- reserve(): available check, RESERVATION row, InsufficientInventoryError
- release()/deduct(): ownership from the transaction log
- adjust(): reason required, on-hand never below reserved
- release_all()/deduct_all(): every outstanding reservation of an order
- reserve-then-release restores the reserved counter exactly
"""

import pytest
from sqlalchemy import func, select

from fulfillment_kernel.domain.statuses import TransactionType
from fulfillment_kernel.exceptions import (
    InsufficientInventoryError,
    InvariantViolationError,
    InventoryUnitNotFoundError,
    ValidationError,
)
from fulfillment_kernel.invariants import KernelInvariant
from fulfillment_kernel.models.inventory import InventoryTransaction
from fulfillment_kernel.services.inventory_ledger import InventoryLedger


@pytest.fixture
def ledger(session, deterministic_clock) -> InventoryLedger:
    return InventoryLedger(session, deterministic_clock)


@pytest.fixture
def stocked(ledger, actor):
    """W1@A-01-01 with 5 on hand."""
    ledger.receive("W1", "A-01-01", 5, actor, reason="inbound")
    return ("W1", "A-01-01")


def _transaction_count(session) -> int:
    return session.execute(select(func.count(InventoryTransaction.id))).scalar_one()


class TestReceive:

    def test_first_receipt_creates_the_unit(self, ledger, actor, captured_logs):
        result = ledger.receive("W9", "B-02-01", 7, actor)

        assert result.transaction_type is TransactionType.RECEIPT
        assert result.quantity == 7
        assert result.order_id is None
        assert result.unit.quantity_on_hand == 7
        assert result.unit.quantity_reserved == 0
        messages = [r["message"] for r in captured_logs()]
        assert "inventory_unit_created" in messages
        assert "inventory_received" in messages

    def test_second_receipt_adds_on_hand(self, ledger, actor, stocked):
        result = ledger.receive(*stocked, 3, actor)
        assert result.unit.quantity_on_hand == 8

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
    def test_rejects_non_positive_or_non_integer(self, ledger, actor, quantity):
        with pytest.raises(ValidationError) as exc_info:
            ledger.receive("W1", "A-01-01", quantity, actor)
        assert exc_info.value.field == "quantity"

    def test_requires_sku_and_bin(self, ledger, actor):
        with pytest.raises(ValidationError):
            ledger.receive("", "A-01-01", 1, actor)


class TestReserve:

    def test_reserve_moves_reserved_only(self, ledger, actor, stocked):
        result = ledger.reserve(*stocked, 2, "O1", actor)

        assert result.transaction_type is TransactionType.RESERVATION
        assert result.quantity == 2
        assert result.order_id == "O1"
        assert result.unit.quantity_on_hand == 5
        assert result.unit.quantity_reserved == 2
        assert result.unit.available == 3

    def test_reserve_up_to_exactly_available(self, ledger, actor, stocked):
        ledger.reserve(*stocked, 3, "O1", actor)
        result = ledger.reserve(*stocked, 2, "O2", actor)
        assert result.unit.available == 0

    def test_insufficient_raises_and_changes_nothing(self, ledger, actor, stocked, session):
        ledger.reserve(*stocked, 4, "O1", actor)
        before = _transaction_count(session)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            ledger.reserve(*stocked, 2, "O2", actor)

        assert exc_info.value.requested == 2
        assert exc_info.value.available == 1
        assert _transaction_count(session) == before
        unit = ledger.lock_unit(*stocked)
        assert unit.quantity_reserved == 4

    def test_unknown_unit(self, ledger, actor):
        with pytest.raises(InventoryUnitNotFoundError) as exc_info:
            ledger.reserve("NOPE", "Z-99", 1, "O1", actor)
        assert exc_info.value.sku == "NOPE"

    def test_non_positive_quantity(self, ledger, actor, stocked):
        with pytest.raises(ValidationError):
            ledger.reserve(*stocked, 0, "O1", actor)


class TestReleaseAndDeduct:

    def test_reserve_then_release_restores_reserved(self, ledger, actor, stocked):
        before = ledger.lock_unit(*stocked).quantity_reserved
        ledger.reserve(*stocked, 3, "O1", actor)
        result = ledger.release(*stocked, 3, "O1", actor)

        assert result.transaction_type is TransactionType.CANCELLATION
        assert result.quantity == -3
        assert result.unit.quantity_reserved == before
        assert ledger.outstanding_reservation("O1", *stocked) == 0

    def test_release_more_than_held_is_an_invariant_violation(self, ledger, actor, stocked):
        ledger.reserve(*stocked, 1, "O1", actor)
        ledger.reserve(*stocked, 2, "O2", actor)

        with pytest.raises(InvariantViolationError) as exc_info:
            ledger.release(*stocked, 2, "O1", actor)

        assert exc_info.value.invariant == KernelInvariant.RESERVATION_OWNERSHIP.value
        assert exc_info.value.context["held"] == 1
        assert ledger.lock_unit(*stocked).quantity_reserved == 3

    def test_deduct_consumes_on_hand_and_reserved(self, ledger, actor, stocked):
        ledger.reserve(*stocked, 2, "O1", actor)
        result = ledger.deduct(*stocked, 2, "O1", actor, reason="shipped")

        assert result.transaction_type is TransactionType.DEDUCTION
        assert result.quantity == -2
        assert result.unit.quantity_on_hand == 3
        assert result.unit.quantity_reserved == 0
        assert ledger.outstanding_reservation("O1", *stocked) == 0

    def test_deduct_without_reservation_rejected(self, ledger, actor, stocked):
        with pytest.raises(InvariantViolationError):
            ledger.deduct(*stocked, 1, "O1", actor)

    def test_release_all_covers_every_unit(self, ledger, actor, stocked):
        ledger.receive("W2", "A-01-02", 4, actor)
        ledger.reserve(*stocked, 2, "O1", actor)
        ledger.reserve("W2", "A-01-02", 4, "O1", actor)
        ledger.reserve(*stocked, 1, "O2", actor)

        results = ledger.release_all("O1", actor, reason="cancel")

        assert [(r.sku, r.quantity) for r in results] == [("W1", -2), ("W2", -4)]
        assert ledger.outstanding_reservations("O1") == {}
        assert ledger.outstanding_reservations("O2") == {("W1", "A-01-01"): 1}

    def test_deduct_all_with_nothing_reserved_is_empty(self, ledger, actor):
        assert ledger.deduct_all("O-NONE", actor) == []


class TestAdjust:

    def test_adjust_down_and_up(self, ledger, actor, stocked):
        assert ledger.adjust(*stocked, -2, actor, reason="cycle count").unit.quantity_on_hand == 3
        result = ledger.adjust(*stocked, 4, actor, reason="found")
        assert result.transaction_type is TransactionType.ADJUSTMENT
        assert result.unit.quantity_on_hand == 7

    def test_adjust_below_zero(self, ledger, actor, stocked):
        with pytest.raises(InvariantViolationError) as exc_info:
            ledger.adjust(*stocked, -6, actor, reason="lost")
        assert exc_info.value.invariant == KernelInvariant.STOCK_NON_NEGATIVE.value

    def test_adjust_below_reserved(self, ledger, actor, stocked):
        ledger.reserve(*stocked, 4, "O1", actor)
        with pytest.raises(InvariantViolationError) as exc_info:
            ledger.adjust(*stocked, -2, actor, reason="damaged")
        assert exc_info.value.invariant == KernelInvariant.RESERVATION_BOUNDED.value

    @pytest.mark.parametrize("delta,reason", [(0, "x"), (1, ""), (1, "   "), (1, None)])
    def test_adjust_validation(self, ledger, actor, stocked, delta, reason):
        with pytest.raises(ValidationError):
            ledger.adjust(*stocked, delta, actor, reason=reason)


class TestTransactionLog:

    def test_every_call_appends_exactly_one_row(self, ledger, actor, session):
        start = _transaction_count(session)
        ledger.receive("W1", "A-01-01", 5, actor)
        ledger.reserve("W1", "A-01-01", 2, "O1", actor)
        ledger.release("W1", "A-01-01", 1, "O1", actor)
        ledger.deduct("W1", "A-01-01", 1, "O1", actor)
        ledger.adjust("W1", "A-01-01", -1, actor, reason="damage")
        assert _transaction_count(session) == start + 5

    def test_rows_carry_actor_and_reason(self, ledger, actor, session):
        ledger.receive("W1", "A-01-01", 5, actor, reason="PO-123")
        row = session.execute(
            select(InventoryTransaction).where(InventoryTransaction.reason == "PO-123")
        ).scalar_one()
        assert row.actor_id == actor.user_id
        assert row.actor_role == actor.role
        assert row.transaction_type == TransactionType.RECEIPT.value
