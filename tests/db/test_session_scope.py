"""
Tests for db.engine.session_scope -- the unit-of-work helper for callers
that drive kernel services without the orchestrator.

The scope is pointed at the suite's savepoint-bound session, so its
commit releases a savepoint and the outer test transaction still undoes
everything on teardown.
"""

import pytest

from fulfillment_kernel.db import engine as engine_module
from fulfillment_kernel.db.engine import session_scope
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.selectors import InventorySelector
from fulfillment_kernel.services.inventory_ledger import InventoryLedger

RECEIVER = Actor(user_id="receiver-1", role="supervisor")


@pytest.fixture
def scoped(session, monkeypatch):
    """Route session_scope to the test session; a closed session can still be read from."""
    monkeypatch.setattr(engine_module, "get_session", lambda: session)
    return InventorySelector(session)


class TestSessionScope:

    def test_commits_on_success(self, scoped, deterministic_clock):
        with session_scope() as session:
            InventoryLedger(session, deterministic_clock).receive(
                "SCOPE-1", "S-01-01", 4, RECEIVER, reason="cycle count"
            )

        unit = scoped.get_unit("SCOPE-1", "S-01-01")
        assert unit is not None
        assert unit.quantity_on_hand == 4

    def test_rolls_back_and_reraises(self, scoped, deterministic_clock, captured_logs):
        with pytest.raises(RuntimeError, match="scanner offline"):
            with session_scope() as session:
                InventoryLedger(session, deterministic_clock).receive(
                    "SCOPE-2", "S-02-02", 4, RECEIVER, reason="cycle count"
                )
                session.flush()
                raise RuntimeError("scanner offline")

        assert scoped.get_unit("SCOPE-2", "S-02-02") is None
        rolled_back = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert len(rolled_back) == 1
        assert rolled_back[0]["logger"] == "fulfillment_kernel.db.engine"
        assert rolled_back[0]["exc_type"] == "RuntimeError"

    def test_session_is_closed_after_scope(self, scoped, session):
        with session_scope() as scoped_session:
            assert scoped_session is session
            scoped_session.connection()

        assert not session.in_transaction()
