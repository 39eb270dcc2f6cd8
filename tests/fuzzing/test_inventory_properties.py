"""
Property-based tests for stock counters and pick bounds.

Verifies, for arbitrary operation sequences:
- 0 <= reserved <= on_hand (available never negative) after every call
- the counters always equal a replay of the transaction log
- reserve q then release q restores the reserved counter exactly
- 0 <= picked <= ordered across any mix of record_pick / undo_pick

The session is shared by every example of a test, so each example works
on its own SKU, order and picker.
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from fulfillment_kernel.domain.dtos import Actor, OrderLineSpec
from fulfillment_kernel.exceptions import (
    FulfillmentKernelError,
    InsufficientInventoryError,
    InvariantViolationError,
    ValidationError,
)
from fulfillment_kernel.selectors.inventory_selector import InventorySelector
from fulfillment_kernel.services.fulfillment_orchestrator import FulfillmentOrchestrator
from fulfillment_kernel.services.inventory_ledger import InventoryLedger

_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

ledger_ops = st.lists(
    st.tuples(
        st.sampled_from(["receive", "reserve", "release", "adjust"]),
        st.integers(min_value=-6, max_value=8),
        st.sampled_from(["O1", "O2"]),
    ),
    min_size=1,
    max_size=25,
)


def _fresh_sku() -> str:
    return f"SKU-{uuid4().hex[:10]}"


@pytest.fixture
def ledger(session, deterministic_clock) -> InventoryLedger:
    return InventoryLedger(session, deterministic_clock)


class TestStockCounters:

    @given(ops=ledger_ops)
    @_SETTINGS
    def test_counters_bounded_and_replayable(self, ledger, session, actor, ops):
        sku, bin_location = _fresh_sku(), "F-01-01"
        selector = InventorySelector(session)
        ledger.receive(sku, bin_location, 1, actor)

        for op, quantity, order_id in ops:
            try:
                if op == "receive":
                    ledger.receive(sku, bin_location, quantity, actor)
                elif op == "reserve":
                    ledger.reserve(sku, bin_location, quantity, order_id, actor)
                elif op == "release":
                    ledger.release(sku, bin_location, quantity, order_id, actor)
                else:
                    ledger.adjust(sku, bin_location, quantity, actor, reason="fuzz")
            except (ValidationError, InsufficientInventoryError, InvariantViolationError):
                pass

            unit = selector.get_unit(sku, bin_location)
            assert 0 <= unit.quantity_reserved <= unit.quantity_on_hand
            assert unit.available >= 0
            assert selector.replay_counters(sku, bin_location).matches(unit)

        held = ledger.outstanding_reservation("O1", sku, bin_location) + (
            ledger.outstanding_reservation("O2", sku, bin_location)
        )
        assert held == selector.get_unit(sku, bin_location).quantity_reserved

    @given(
        on_hand=st.integers(min_value=1, max_value=50),
        data=st.data(),
    )
    @_SETTINGS
    def test_reserve_then_release_round_trip(self, ledger, actor, on_hand, data):
        sku, bin_location = _fresh_sku(), "F-02-02"
        ledger.receive(sku, bin_location, on_hand, actor)
        already = data.draw(st.integers(min_value=0, max_value=on_hand - 1))
        if already:
            ledger.reserve(sku, bin_location, already, "OTHER", actor)
        quantity = data.draw(st.integers(min_value=1, max_value=on_hand - already))

        before = ledger.lock_unit(sku, bin_location).quantity_reserved
        ledger.reserve(sku, bin_location, quantity, "ORDER", actor)
        after = ledger.release(sku, bin_location, quantity, "ORDER", actor)

        assert after.unit.quantity_reserved == before
        assert after.unit.quantity_on_hand == on_hand


class TestPickBounds:

    @given(
        ordered=st.integers(min_value=1, max_value=10),
        steps=st.lists(
            st.tuples(st.booleans(), st.integers(min_value=-2, max_value=12)),
            min_size=1,
            max_size=20,
        ),
    )
    @_SETTINGS
    def test_picked_stays_within_ordered(self, session, deterministic_clock, actor, ordered, steps):
        orchestrator = FulfillmentOrchestrator(session, clock=deterministic_clock)
        sku, bin_location = _fresh_sku(), "F-03-03"
        order_id = f"FZ-{uuid4().hex[:10]}"
        picker = Actor(f"picker-{uuid4().hex[:6]}", "picker")
        item_id = f"{order_id}-L1"

        orchestrator.receive_stock(sku, bin_location, ordered, actor)
        orchestrator.create_order(
            order_id, [OrderLineSpec(item_id, sku, bin_location, ordered)], actor
        )
        orchestrator.claim_order(order_id, picker.user_id, picker)

        for is_pick, quantity in steps:
            try:
                if is_pick:
                    order = orchestrator.record_pick(
                        order_id, item_id, quantity, bin_location, picker
                    ).order
                else:
                    order = orchestrator.undo_pick(
                        order_id, item_id, quantity, picker, reason="fuzz"
                    )
            except FulfillmentKernelError:
                continue

            line = order.item(item_id)
            assert 0 <= line.picked_quantity <= line.quantity
            assert 0 <= order.progress <= 100
