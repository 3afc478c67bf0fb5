"""Rebalancing Planner unit tests."""

from datetime import date, timedelta

import pytest

from inventory_network.models import DemandPoint, TransferReason, TransferStatus
from inventory_network.services import RebalancingPlanner

from conftest import make_warehouse


@pytest.fixture
def network(registry, ledger):
    """A holds 100 units of P, B and C hold 10 each with a reorder point."""
    a, b, c = (registry.register(make_warehouse(code)) for code in ("A", "B", "C"))
    ledger.receive_stock("P", a.id, 100)
    for warehouse in (b, c):
        ledger.receive_stock("P", warehouse.id, 10)
        ledger.set_stock_policy("P", warehouse.id, reorder_point=15)
    return a, b, c


def proposals(plan):
    return sorted(
        (t.from_warehouse, t.to_warehouse, t.items[0].product_id, t.items[0].quantity) for t in plan.transfers
    )


class TestPlan:
    """Plan generation."""

    def test_excess_feeds_every_deficit(self, services, network):
        """Mean 40: A is in excess, B and C get floor((100 - 40) / 2) = 30 each."""
        a, b, c = network
        plan = services.planner.generate_rebalancing_plan()

        assert proposals(plan) == sorted([(a.id, b.id, "P", 30), (a.id, c.id, "P", 30)])
        assert all(t.status == TransferStatus.PENDING for t in plan.transfers)
        assert all(t.reason == TransferReason.REBALANCING for t in plan.transfers)
        assert plan.estimated_cost == 200
        assert plan.expected_improvement == 15.0

    def test_plan_is_only_a_draft(self, services, ledger, network):
        a, _, _ = network
        services.planner.generate_rebalancing_plan()
        assert ledger.get_level("P", a.id).in_transit == 0
        assert services.transfers.list_transfers() == []

    def test_never_overcommits_source(self, services, ledger, network):
        """A has only 40 available: one 30-unit proposal fits, the second does not."""
        a, _, _ = network
        ledger.reserve("P", a.id, 60)
        plan = services.planner.generate_rebalancing_plan()

        assert len(plan.transfers) == 1
        assert sum(t.total_units for t in plan.transfers) <= ledger.get_level("P", a.id).available

    def test_deficit_needs_reorder_point(self, services, registry, ledger, network):
        a, _, _ = network
        unmanaged = registry.register(make_warehouse("D"))
        ledger.receive_stock("P", unmanaged.id, 1)
        plan = services.planner.generate_rebalancing_plan()
        assert unmanaged.id not in {t.to_warehouse for t in plan.transfers}

    def test_single_holder_is_skipped(self, services, registry, ledger, network):
        a, _, _ = network
        ledger.receive_stock("SOLO", a.id, 500)
        plan = services.planner.generate_rebalancing_plan()
        assert all(t.items[0].product_id == "P" for t in plan.transfers)

    def test_inactive_warehouses_ignored(self, services, registry, network):
        a, _, _ = network
        registry.deactivate(a.id)
        assert services.planner.generate_rebalancing_plan().transfers == []

    def test_balanced_network_has_no_plan(self, services, registry, ledger):
        for code in ("A", "B"):
            warehouse = registry.register(make_warehouse(code))
            ledger.receive_stock("P", warehouse.id, 50)
            ledger.set_stock_policy("P", warehouse.id, reorder_point=10)
        plan = services.planner.generate_rebalancing_plan()
        assert plan.transfers == []
        assert plan.estimated_cost == 0

    def test_plan_submits_cleanly(self, services, ledger, network):
        a, _, _ = network
        plan = services.planner.generate_rebalancing_plan()
        submission = services.transfers.submit_plan(plan)
        assert len(submission.created) == 2
        assert ledger.get_level("P", a.id).in_transit == 60


class TestDemandOrdering:
    """Highest forecast demand is served first."""

    def test_busiest_deficit_first(self, services, ledger, network):
        a, b, c = network
        ledger.reserve("P", a.id, 60)
        start = date(2024, 1, 1)

        def history(product_id, warehouse_id):
            daily = 50 if warehouse_id == c.id else 1
            return [DemandPoint(start + timedelta(days=i), daily) for i in range(14)]

        services.forecaster.history_provider = history
        plan = services.planner.generate_rebalancing_plan()
        assert [t.to_warehouse for t in plan.transfers] == [c.id]


class TestConfiguration:
    """Planner thresholds."""

    def test_ratios_must_be_ordered(self, ledger):
        with pytest.raises(ValueError):
            RebalancingPlanner(ledger, excess_ratio=0.5, deficit_ratio=0.5)
