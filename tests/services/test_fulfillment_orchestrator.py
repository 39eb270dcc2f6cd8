"""
Tests for FulfillmentOrchestrator -- the transaction and logging boundary.

Covers:
- actor validation before any work
- failure rolls back everything the operation wrote
- structured started/completed/failed events with correlation context
- invariant violations logged at ERROR with the violated invariant
"""

import pytest

from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.domain.statuses import OrderStatus
from fulfillment_kernel.exceptions import (
    InsufficientInventoryError,
    InvariantViolationError,
    OrderNotFoundError,
    ValidationError,
)


class TestActorValidation:

    @pytest.mark.parametrize("bad_actor", [None, "picker-1", {"user_id": "picker-1"}])
    def test_non_actor_rejected(self, orchestrator, create_order, bad_actor, captured_logs):
        order = create_order([("W1", "A-01-01", 1)])
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.claim_order(order.order_id, "picker-1", bad_actor)
        assert exc_info.value.field == "actor"
        assert not any(r["message"].startswith("claim_order") for r in captured_logs())


class TestRollback:

    def test_failed_claim_leaves_no_partial_reservation(
        self, orchestrator, stock, create_order, picker_actor, inventory_selector
    ):
        stock("W1", "A-01-01", 2)
        stock("W2", "A-01-02", 2)
        order = create_order([("W1", "A-01-01", 2), ("W2", "A-01-02", 3)])

        with pytest.raises(InsufficientInventoryError):
            orchestrator.claim_order(order.order_id, "picker-1", picker_actor)

        assert inventory_selector.total_outstanding(order.order_id) == 0
        assert inventory_selector.transactions(order_id=order.order_id) == []

    def test_state_unchanged_after_failure(
        self, orchestrator, create_order, picker_actor, order_selector
    ):
        order = create_order([("W1", "A-01-01", 1)])
        with pytest.raises(InsufficientInventoryError):
            orchestrator.claim_order(order.order_id, "picker-1", picker_actor)

        after = order_selector.get_order(order.order_id)
        assert after.status is OrderStatus.PENDING
        assert after.picker_id is None
        assert len(order_selector.state_changes(order.order_id)) == 1

    def test_session_usable_after_failure(
        self, orchestrator, stock, create_order, picker_actor
    ):
        order = create_order([("W1", "A-01-01", 1)])
        with pytest.raises(InsufficientInventoryError):
            orchestrator.claim_order(order.order_id, "picker-1", picker_actor)

        stock("W1", "A-01-01", 1)
        assert orchestrator.claim_order(order.order_id, "picker-1", picker_actor).status is (
            OrderStatus.PICKING
        )


class TestStructuredLogging:

    def test_started_and_completed_share_context(
        self, orchestrator, stock, create_order, picker_actor, captured_logs
    ):
        stock("W1", "A-01-01", 1)
        order = create_order([("W1", "A-01-01", 1)])
        orchestrator.claim_order(order.order_id, "picker-1", picker_actor)

        logs = captured_logs()
        started = next(r for r in logs if r["message"] == "claim_order_started")
        completed = next(r for r in logs if r["message"] == "claim_order_completed")

        assert started["correlation_id"] == completed["correlation_id"]
        assert started["order_id"] == order.order_id
        assert started["actor_id"] == picker_actor.user_id
        assert started["actor_role"] == "picker"
        assert "duration_ms" in completed

        inner = [r for r in logs if r.get("correlation_id") == started["correlation_id"]]
        messages = {r["message"] for r in inner}
        assert {"reservation_created", "order_state_changed", "order_claimed"} <= messages

    def test_each_operation_gets_its_own_correlation_id(
        self, orchestrator, stock, actor, captured_logs
    ):
        stock("W1", "A-01-01", 1)
        stock("W1", "A-01-01", 1)

        ids = {
            r["correlation_id"]
            for r in captured_logs()
            if r["message"] == "receive_stock_started"
        }
        assert len(ids) == 2

    def test_kernel_error_logged_as_warning(
        self, orchestrator, picker_actor, captured_logs
    ):
        with pytest.raises(OrderNotFoundError):
            orchestrator.claim_order("NOPE", "picker-1", picker_actor)

        failed = next(r for r in captured_logs() if r["message"] == "claim_order_failed")
        assert failed["level"] == "WARNING"
        assert failed["error_code"] == "ORDER_NOT_FOUND"

    def test_invariant_violation_logged_as_error(
        self, orchestrator, stock, actor, captured_logs
    ):
        stock("W1", "A-01-01", 2)
        with pytest.raises(InvariantViolationError):
            orchestrator.adjust_stock("W1", "A-01-01", -3, actor, reason="recount")

        logs = captured_logs()
        violation = next(r for r in logs if r["message"] == "invariant_violation_detected")
        assert violation["level"] == "ERROR"
        assert violation["exc_invariant"] == "stock_non_negative"
        failed = next(r for r in logs if r["message"] == "adjust_stock_failed")
        assert failed["level"] == "ERROR"

    def test_context_cleared_after_operation(self, orchestrator, stock):
        from fulfillment_kernel.logging_config import LogContext

        stock("W1", "A-01-01", 1)
        assert LogContext.get_all() == {}


class TestWorkerDefaults:

    def test_default_directory_admits_any_worker(self, session, deterministic_clock, create_order, stock):
        from fulfillment_kernel.services.fulfillment_orchestrator import FulfillmentOrchestrator

        open_door = FulfillmentOrchestrator(session, clock=deterministic_clock)
        stock("W1", "A-01-01", 1)
        order = create_order([("W1", "A-01-01", 1)])

        claimed = open_door.claim_order(order.order_id, "temp-7", Actor("temp-7", "picker"))
        assert claimed.picker_id == "temp-7"
