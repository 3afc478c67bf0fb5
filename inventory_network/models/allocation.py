"""Order and allocation records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from inventory_network.models.warehouse import Coordinates


class OrderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AllocationAlgorithm(str, Enum):
    NEAREST = "nearest"
    INVENTORY = "inventory"
    COST = "cost"
    HYBRID = "hybrid"


class AllocationStatus(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class AllocationWeights:
    distance: float = 0.4
    inventory: float = 0.3
    cost: float = 0.3


@dataclass
class OrderItem:
    product_id: str
    quantity: int


@dataclass
class Order:
    id: str
    items: list[OrderItem]
    customer_id: str = ""
    customer_location: Optional[Coordinates] = None
    priority: OrderPriority = OrderPriority.MEDIUM

    @property
    def total_units(self) -> int:
        # Stand-in for shipment weight until product weights are available
        return sum(item.quantity for item in self.items)


@dataclass
class AllocatedItem:
    product_id: str
    quantity: int
    location_ids: list[str] = field(default_factory=list)


@dataclass
class WarehouseAllocation:
    warehouse_id: str
    warehouse_name: str
    items: list[AllocatedItem] = field(default_factory=list)
    estimated_shipping_cost: Optional[float] = None
    estimated_delivery_days: Optional[int] = None
    distance: Optional[float] = None

    @property
    def total_units(self) -> int:
        return sum(item.quantity for item in self.items)


@dataclass
class UnallocatedItem:
    product_id: str
    requested_qty: int
    allocated_qty: int
    shortfall: int


@dataclass
class AllocationResult:
    order_id: str
    allocations: list[WarehouseAllocation] = field(default_factory=list)
    status: AllocationStatus = AllocationStatus.FAILED
    unallocated_items: list[UnallocatedItem] = field(default_factory=list)

    def total_allocated(self, product_id: Optional[str] = None) -> int:
        return sum(
            item.quantity
            for allocation in self.allocations
            for item in allocation.items
            if product_id is None or item.product_id == product_id
        )
