"""Seeded sample network: warehouses, stock and daily sales history.

The generated stock is deliberately uneven (one hub holds most of it) so
that rebalancing has something to propose, and a few products get a
demand spike in the last week of history.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from inventory_network.models.forecast import DemandPoint
from inventory_network.models.warehouse import (
    Address,
    Coordinates,
    Warehouse,
    WarehouseType,
)
from inventory_network.services import Services

# code, name, city, lat, lng, type
WAREHOUSES = [
    ("SEA", "Seattle Hub", "Seattle", 47.6062, -122.3321, WarehouseType.PRIMARY),
    ("PDX", "Portland Depot", "Portland", 45.5152, -122.6784, WarehouseType.SECONDARY),
    ("SFO", "Bay Area Depot", "San Francisco", 37.7749, -122.4194, WarehouseType.REGIONAL),
    ("LAX", "Los Angeles Depot", "Los Angeles", 34.0522, -118.2437, WarehouseType.REGIONAL),
    ("PHX", "Phoenix Pop-up", "Phoenix", 33.4484, -112.0740, WarehouseType.POP_UP),
]

PRODUCTS = [f"SKU{n:03d}" for n in range(1, 11)]

HUB_STOCK = (300, 600)
DEPOT_STOCK = (5, 60)
REORDER_POINT = 40
WEEKEND_MULTIPLIER = 1.3
SPIKE_MULTIPLIER = 3
SPIKE_PRODUCTS = PRODUCTS[:2]


@dataclass
class SalesHistory:
    """In-memory historical sales, usable as the forecaster's history provider."""

    series: dict[tuple[str, Optional[str]], list[DemandPoint]] = field(default_factory=dict)

    def add(self, product_id: str, warehouse_id: Optional[str], point: DemandPoint) -> None:
        self.series.setdefault((product_id, warehouse_id), []).append(point)

    def __call__(self, product_id: str, warehouse_id: Optional[str] = None) -> list[DemandPoint]:
        if warehouse_id is not None:
            return list(self.series.get((product_id, warehouse_id), []))

        # Network-wide: sum of every warehouse per day
        totals: dict[date, float] = {}
        for (p, _), points in self.series.items():
            if p != product_id:
                continue
            for point in points:
                totals[point.date] = totals.get(point.date, 0) + point.quantity
        return [DemandPoint(d, q) for d, q in sorted(totals.items())]


def sample_warehouses() -> list[Warehouse]:
    return [
        Warehouse(
            code=code,
            name=name,
            type=wh_type,
            address=Address(city=city, country="US", coordinates=Coordinates(lat, lng)),
        )
        for code, name, city, lat, lng, wh_type in WAREHOUSES
    ]


def generate_sales_history(
    warehouse_ids: list[str],
    days: int = 60,
    end_date: Optional[date] = None,
    seed: int = 42,
) -> SalesHistory:
    """Daily sales per (product, warehouse); weekends sell 30% more."""
    rng = random.Random(seed)
    end = end_date or date.today()
    start = end - timedelta(days=days)
    history = SalesHistory()

    for warehouse_id in warehouse_ids:
        for product_id in PRODUCTS:
            for offset in range(days):
                day = start + timedelta(days=offset)
                qty = rng.randint(1, 15)
                if day.weekday() >= 5:
                    qty = int(qty * WEEKEND_MULTIPLIER)
                if product_id in SPIKE_PRODUCTS and offset >= days - 7:
                    qty *= SPIKE_MULTIPLIER
                history.add(product_id, warehouse_id, DemandPoint(day, qty))
    return history


def seed_network(services: Services, seed: int = 42) -> list[Warehouse]:
    """Registers the sample warehouses and stocks them; the first one is the hub."""
    rng = random.Random(seed)
    warehouses = [services.registry.register(w) for w in sample_warehouses()]

    for index, warehouse in enumerate(warehouses):
        location = services.registry.create_location(warehouse.id, zone="A", aisle=1, shelf=1, bin=1)
        low, high = HUB_STOCK if index == 0 else DEPOT_STOCK
        for product_id in PRODUCTS:
            services.ledger.add_stock_to_location(location.id, product_id, rng.randint(low, high))
            if index > 0:
                services.ledger.set_stock_policy(product_id, warehouse.id, reorder_point=REORDER_POINT)
    return warehouses
