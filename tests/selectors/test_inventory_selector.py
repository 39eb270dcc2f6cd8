"""Tests for InventorySelector read paths and log replay."""

from fulfillment_kernel.domain.statuses import TransactionType


class TestInventorySelector:

    def test_unknown_unit(self, inventory_selector):
        assert inventory_selector.get_unit("NOPE", "Z-01") is None
        assert inventory_selector.available("NOPE") == 0

    def test_available_across_bins(self, stock, inventory_selector):
        stock("W1", "A-01-01", 4)
        stock("W1", "B-01-01", 6)

        assert inventory_selector.available("W1") == 10
        assert inventory_selector.available("W1", "B-01-01") == 6
        assert [u.bin_location for u in inventory_selector.units_for_sku("W1")] == [
            "A-01-01",
            "B-01-01",
        ]

    def test_available_net_of_reservations(self, picking_order, inventory_selector):
        picking_order([("W1", "A-01-01", 2)], on_hand=5)
        assert inventory_selector.available("W1", "A-01-01") == 3

    def test_transactions_filtered(self, picking_order, inventory_selector):
        order = picking_order([("W1", "A-01-01", 2)])

        by_order = inventory_selector.transactions(order_id=order.order_id)
        assert [(t.transaction_type, t.quantity) for t in by_order] == [
            (TransactionType.RESERVATION, 2)
        ]
        by_unit = inventory_selector.transactions("W1", "A-01-01")
        assert {t.transaction_type for t in by_unit} == {
            TransactionType.RECEIPT,
            TransactionType.RESERVATION,
        }

    def test_replay_matches_counters_through_a_lifecycle(
        self, packed_order, picking_order, orchestrator, actor, inventory_selector
    ):
        shipped = packed_order([("W1", "A-01-01", 2)], on_hand=5)
        orchestrator.ship_order(shipped.order_id, "ground", "UPS", actor)
        cancelled = picking_order([("W1", "A-01-01", 1)], on_hand=1)
        orchestrator.cancel_order(cancelled.order_id, actor, reason="customer request")
        orchestrator.adjust_stock("W1", "A-01-01", -1, actor, reason="cycle count")

        unit = inventory_selector.get_unit("W1", "A-01-01")
        replayed = inventory_selector.replay_counters("W1", "A-01-01")

        assert (unit.quantity_on_hand, unit.quantity_reserved) == (3, 0)
        assert replayed.matches(unit)
        assert inventory_selector.total_outstanding(shipped.order_id) == 0
        assert inventory_selector.total_outstanding(cancelled.order_id) == 0
