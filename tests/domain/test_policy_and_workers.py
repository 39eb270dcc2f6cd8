"""Tests for FulfillmentPolicy, the worker directory, Actor and the clock."""

from datetime import datetime, timezone

import pytest

from fulfillment_kernel.domain.clock import DeterministicClock, SystemClock
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy
from fulfillment_kernel.domain.statuses import OrderPriority, WorkerRole
from fulfillment_kernel.domain.workers import StaticWorkerDirectory


class TestFulfillmentPolicy:

    def test_defaults(self):
        assert DEFAULT_POLICY.max_orders_per_picker == 10
        assert DEFAULT_POLICY.max_orders_per_packer == 5
        assert DEFAULT_POLICY.revalidate_on_backorder_release is False
        assert DEFAULT_POLICY.exception_id_prefix == "EXC"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_orders_per_picker": 0},
            {"max_orders_per_packer": -1},
            {"exception_id_prefix": ""},
        ],
    )
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            FulfillmentPolicy(**kwargs)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_POLICY.max_orders_per_picker = 1


class TestStaticWorkerDirectory:

    def test_role_membership(self):
        workers = StaticWorkerDirectory(pickers=["p1"], packers=["k1"])
        assert workers.is_active("p1", WorkerRole.PICKER)
        assert not workers.is_active("p1", WorkerRole.PACKER)
        assert workers.is_active("k1", "PACKER")

    def test_activate_and_deactivate(self):
        workers = StaticWorkerDirectory()
        workers.activate("p1", WorkerRole.PICKER)
        assert workers.is_active("p1", WorkerRole.PICKER)
        workers.deactivate("p1", WorkerRole.PICKER)
        assert not workers.is_active("p1", WorkerRole.PICKER)

    def test_allow_all_still_requires_an_id(self):
        workers = StaticWorkerDirectory(allow_all=True)
        assert workers.is_active("anyone", WorkerRole.PACKER)
        assert not workers.is_active("", WorkerRole.PICKER)


class TestActor:

    def test_user_id_required(self):
        with pytest.raises(ValueError):
            Actor(user_id="", role="picker")


class TestPriority:

    def test_rank_orders_the_queue(self):
        ranked = sorted(OrderPriority, key=lambda p: p.rank, reverse=True)
        assert ranked == [
            OrderPriority.URGENT,
            OrderPriority.HIGH,
            OrderPriority.NORMAL,
            OrderPriority.LOW,
        ]


class TestClock:

    def test_deterministic_clock_is_stable_until_advanced(self):
        clock = DeterministicClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
        assert clock.now() == clock.now()
        assert clock.tick() == datetime(2024, 6, 1, 0, 0, 1, tzinfo=timezone.utc)
        clock.advance(59)
        assert clock.now() == datetime(2024, 6, 1, 0, 1, tzinfo=timezone.utc)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(10)
        target = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None
