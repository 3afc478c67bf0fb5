from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from inventory_network.config import Settings, get_settings
from inventory_network.services.allocation_engine import AllocationEngine
from inventory_network.services.base_service import BaseService, Clock
from inventory_network.services.demand_forecaster import DemandForecaster, HistoryProvider
from inventory_network.services.inventory_ledger import InventoryLedger, StockChange
from inventory_network.services.locking import ResourceLock
from inventory_network.services.rebalancing_planner import RebalancingPlanner
from inventory_network.services.stock_validator import StockValidator
from inventory_network.services.transfer_manager import TransferManager
from inventory_network.services.warehouse_registry import WarehouseRegistry
from inventory_network.storage import Repositories, build_repositories


@dataclass
class Services:
    registry: WarehouseRegistry
    validator: StockValidator
    ledger: InventoryLedger
    allocation: AllocationEngine
    transfers: TransferManager
    forecaster: DemandForecaster
    planner: RebalancingPlanner


def build_services(
    settings: Optional[Settings] = None,
    repositories: Optional[Repositories] = None,
    history_provider: Optional[HistoryProvider] = None,
    clock: Optional[Clock] = None,
) -> Services:
    """Wires every component against one set of repositories."""
    settings = settings or get_settings()
    repos = repositories or build_repositories(settings)
    common = {"decision_repository": repos.decisions, "clock": clock}

    registry = WarehouseRegistry(
        repos.warehouses, repos.locations, repos.zones, inventory=repos.inventory, **common
    )
    validator = StockValidator(audit_repository=repos.audit)
    ledger = InventoryLedger(
        repos.inventory,
        registry,
        count_repository=repos.counts,
        validator=validator,
        lock_timeout=settings.lock_timeout,
        **common,
    )
    forecaster = DemandForecaster(history_provider=history_provider, **common)
    return Services(
        registry=registry,
        validator=validator,
        ledger=ledger,
        allocation=AllocationEngine(
            ledger,
            registry,
            default_weights=settings.hybrid_weights,
            default_algorithm=settings.default_algorithm,
            **common,
        ),
        transfers=TransferManager(ledger, repos.transfers, registry, **common),
        forecaster=forecaster,
        planner=RebalancingPlanner(
            ledger,
            registry,
            forecaster=forecaster,
            excess_ratio=settings.excess_ratio,
            deficit_ratio=settings.deficit_ratio,
            default_transfer_cost=settings.default_transfer_cost,
            **common,
        ),
    )


__all__ = [
    "AllocationEngine",
    "BaseService",
    "DemandForecaster",
    "InventoryLedger",
    "RebalancingPlanner",
    "ResourceLock",
    "Services",
    "StockChange",
    "StockValidator",
    "TransferManager",
    "WarehouseRegistry",
    "build_services",
]
