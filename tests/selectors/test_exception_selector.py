"""Tests for ExceptionSelector read paths."""

from fulfillment_kernel.domain.statuses import BackorderLineStatus, ExceptionType


class TestExceptionSelector:

    def test_get_missing(self, exception_selector):
        assert exception_selector.get("EXC-NOPE") is None

    def test_open_exceptions_and_summary(
        self, picking_order, orchestrator, actor, picker_actor, exception_selector
    ):
        order = picking_order([("W1", "A-01-01", 2), ("W2", "A-01-02", 1)])
        first, second = order.items
        damage = orchestrator.log_exception(
            order.order_id, first.order_item_id, ExceptionType.DAMAGE, 1, 0, "wet box", picker_actor
        )
        orchestrator.log_exception(
            order.order_id, second.order_item_id, ExceptionType.SHORT_PICK, 1, 0, "empty", picker_actor
        )
        orchestrator.cancel_exception(damage.exception_id, actor, reason="dry after all")

        open_ids = [e.exception_type for e in exception_selector.open_exceptions(order.order_id)]
        assert open_ids == [ExceptionType.SHORT_PICK]

        summary = exception_selector.summary(order.order_id)
        assert summary.total == 2
        assert summary.by_status == {"CANCELLED": 1, "OPEN": 1}
        assert summary.by_type == {"DAMAGE": 1, "SHORT_PICK": 1}

    def test_backorder_lines_by_status(
        self, picking_order, orchestrator, actor, picker_actor, exception_selector
    ):
        order = picking_order([("W1", "A-01-01", 2), ("W2", "A-01-02", 1)])
        exc = orchestrator.log_exception(
            order.order_id, order.items[0].order_item_id, "OUT_OF_STOCK", 2, 1, "one left", picker_actor
        )
        orchestrator.resolve_exception(exc.exception_id, "BACKORDER", actor)

        lines = exception_selector.backorder_lines(order.order_id)
        assert [(b.sku, b.quantity, b.exception_id) for b in lines] == [
            ("W1", 1, exc.exception_id)
        ]
        assert exception_selector.backorder_lines(
            order.order_id, status=BackorderLineStatus.FULFILLED
        ) == []
        assert len(exception_selector.backorder_lines(status=None)) == 1
