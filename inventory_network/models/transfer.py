"""Inter-warehouse transfer and rebalancing plan records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from inventory_network.models.warehouse import new_id


class TransferStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in-transit"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class TransferReason(str, Enum):
    REBALANCING = "rebalancing"
    DEMAND_FORECAST = "demand_forecast"
    CONSOLIDATION = "consolidation"
    MANUAL = "manual"


# Allowed moves of the transfer state machine; received and cancelled are terminal.
TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({TransferStatus.IN_TRANSIT, TransferStatus.CANCELLED}),
    TransferStatus.IN_TRANSIT: frozenset(
        {TransferStatus.IN_TRANSIT, TransferStatus.RECEIVED, TransferStatus.CANCELLED}
    ),
    TransferStatus.RECEIVED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}


@dataclass
class TransferItem:
    product_id: str
    quantity: int


@dataclass
class InventoryTransfer:
    from_warehouse: str
    to_warehouse: str
    items: list[TransferItem]
    status: TransferStatus = TransferStatus.PENDING
    reason: TransferReason = TransferReason.MANUAL
    initiated_at: Optional[datetime] = None
    shipment_date: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def total_units(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def is_open(self) -> bool:
        return self.status in (TransferStatus.PENDING, TransferStatus.IN_TRANSIT)


@dataclass
class RebalancingPlan:
    transfers: list[InventoryTransfer]
    estimated_cost: float
    expected_improvement: float
    reason: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class PlanSubmission:
    plan_id: str
    created: list[InventoryTransfer] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
