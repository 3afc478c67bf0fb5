"""Rebalancing Planner - proposes transfers that flatten stock around the mean.

A warehouse holding a product is in excess above ``excess_ratio`` times the
network mean and in deficit below ``deficit_ratio`` times the mean, the
latter only when it has a reorder point (unmanaged rows are never targets).
Each (excess, deficit) pair gets ``floor((excess - mean) / 2)`` units as long
as the source still has that much available after the pairs already
proposed. Plans are drafts; nothing is booked until they are submitted.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from inventory_network.exceptions import ForecastError
from inventory_network.models.transfer import (
    InventoryTransfer,
    RebalancingPlan,
    TransferItem,
    TransferReason,
    TransferStatus,
)
from inventory_network.models.warehouse import InventoryLevel
from inventory_network.services.base_service import BaseService
from inventory_network.services.demand_forecaster import DemandForecaster
from inventory_network.services.inventory_ledger import InventoryLedger
from inventory_network.services.warehouse_registry import WarehouseRegistry

logger = logging.getLogger(__name__)

EXPECTED_IMPROVEMENT_PCT = 15.0
PLAN_REASON = "Optimize inventory distribution across warehouses"
FORECAST_HORIZON = 7


class RebalancingPlanner(BaseService):
    """Builds rebalancing plans from a consistent ledger snapshot."""

    def __init__(
        self,
        ledger: InventoryLedger,
        registry: Optional[WarehouseRegistry] = None,
        forecaster: Optional[DemandForecaster] = None,
        excess_ratio: float = 1.5,
        deficit_ratio: float = 0.5,
        default_transfer_cost: float = 100.0,
        **kwargs: Any,
    ):
        super().__init__(service_name="RebalancingPlanner", **kwargs)
        if excess_ratio <= deficit_ratio:
            raise ValueError("excess_ratio must be greater than deficit_ratio")
        self.ledger = ledger
        self.registry = registry or ledger.registry
        self.forecaster = forecaster
        self.excess_ratio = excess_ratio
        self.deficit_ratio = deficit_ratio
        self.default_transfer_cost = default_transfer_cost

    def generate_rebalancing_plan(self) -> RebalancingPlan:
        active = {w.id for w in self.registry.list_active()}
        by_product: dict[str, list[InventoryLevel]] = {}
        for level in self.ledger.snapshot():
            if level.warehouse_id in active:
                by_product.setdefault(level.product_id, []).append(level)

        transfers: list[InventoryTransfer] = []
        for product_id, levels in by_product.items():
            transfers.extend(self._plan_product(product_id, levels))

        plan = RebalancingPlan(
            transfers=transfers,
            estimated_cost=sum(t.cost or self.default_transfer_cost for t in transfers),
            expected_improvement=EXPECTED_IMPROVEMENT_PCT,
            reason=PLAN_REASON,
            created_at=self.now(),
        )

        self.log_decision(
            decision_type="rebalancing_plan",
            input_data={"products": len(by_product), "warehouses": len(active)},
            output_data={
                "plan_id": plan.id,
                "transfers": len(transfers),
                "estimated_cost": plan.estimated_cost,
            },
            reasoning=f"{len(transfers)} transfer(s) proposed across {len(by_product)} product(s).",
        )
        logger.info("Rebalancing plan %s: %d transfer(s)", plan.id, len(transfers))
        return plan

    def _plan_product(self, product_id: str, levels: list[InventoryLevel]) -> list[InventoryTransfer]:
        if len(levels) < 2:
            return []

        mean = sum(l.total_quantity for l in levels) / len(levels)
        excess = [l for l in levels if l.total_quantity > mean * self.excess_ratio]
        deficit = [l for l in levels if l.total_quantity < mean * self.deficit_ratio and l.reorder_point]
        if not excess or not deficit:
            return []
        deficit = self._by_demand(product_id, deficit)

        transfers = []
        for source in excess:
            quantity = int((source.total_quantity - mean) // 2)
            if quantity <= 0:
                continue
            remaining = source.available
            for target in deficit:
                if remaining < quantity:
                    logger.debug(
                        "Skipping %s -> %s for %s: %d left, %d needed",
                        source.warehouse_id, target.warehouse_id, product_id, remaining, quantity,
                    )
                    continue
                remaining -= quantity
                transfers.append(InventoryTransfer(
                    from_warehouse=source.warehouse_id,
                    to_warehouse=target.warehouse_id,
                    items=[TransferItem(product_id, quantity)],
                    status=TransferStatus.PENDING,
                    reason=TransferReason.REBALANCING,
                    initiated_at=self.now(),
                ))
        return transfers

    def _by_demand(self, product_id: str, deficit: list[InventoryLevel]) -> list[InventoryLevel]:
        """Highest forecast demand first, when forecasts are available."""
        if self.forecaster is None or self.forecaster.history_provider is None:
            return deficit

        demand: dict[str, float] = {}
        for level in deficit:
            try:
                forecast = self.forecaster.forecast(
                    product_id, warehouse_id=level.warehouse_id, horizon=FORECAST_HORIZON
                )
                demand[level.warehouse_id] = forecast.total_demand
            except (ForecastError, ValueError) as e:
                logger.debug("No forecast for %s at %s: %s", product_id, level.warehouse_id, e)
                demand[level.warehouse_id] = 0.0
        return sorted(deficit, key=lambda l: demand[l.warehouse_id], reverse=True)
