"""Allocation Engine - decides which warehouses ship an order.

Algorithms:
- nearest: closest warehouse that can ship the whole order
- inventory: per item, the warehouse with the deepest stock
- cost: cheapest estimated shipment that covers the whole order
- hybrid: weighted score of distance, stock depth and cost

Every algorithm tries a single-warehouse (per item, for inventory) answer
first and falls back to drawing stock greedily across its ranked candidates.
The engine only reads the ledger; reserving the result is
``InventoryLedger.commit_allocation``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from inventory_network.exceptions import MissingLocationError, ValidationError
from inventory_network.models.allocation import (
    AllocatedItem,
    AllocationAlgorithm,
    AllocationResult,
    AllocationStatus,
    AllocationWeights,
    Order,
    UnallocatedItem,
    WarehouseAllocation,
)
from inventory_network.models.warehouse import InventoryLevel, Warehouse
from inventory_network.services.base_service import BaseService
from inventory_network.services.geo import (
    estimate_delivery_days,
    estimate_shipping_cost,
    haversine_km,
)
from inventory_network.services.inventory_ledger import InventoryLedger
from inventory_network.services.warehouse_registry import WarehouseRegistry

logger = logging.getLogger(__name__)

# Hybrid score normalisation
DISTANCE_SCALE_KM = 1000.0
INVENTORY_SCALE_UNITS = 10000.0
COST_SCALE = 5000.0


@dataclass
class _Candidate:
    warehouse: Warehouse
    stock: dict[str, InventoryLevel]
    distance: Optional[float] = None
    cost: Optional[float] = None
    score: float = 0.0

    def available(self, product_id: str) -> int:
        level = self.stock.get(product_id)
        return level.available if level else 0

    def location_ids(self, product_id: str) -> list[str]:
        level = self.stock.get(product_id)
        return level.location_ids if level else []

    def can_fulfill(self, order: Order) -> bool:
        needed: dict[str, int] = {}
        for item in order.items:
            needed[item.product_id] = needed.get(item.product_id, 0) + item.quantity
        return all(self.available(p) >= q for p, q in needed.items())

    def total_available(self, order: Order) -> int:
        return sum(self.available(p) for p in {item.product_id for item in order.items})


class AllocationEngine(BaseService):
    """Read-only allocation of orders to warehouses."""

    def __init__(
        self,
        ledger: InventoryLedger,
        registry: Optional[WarehouseRegistry] = None,
        default_weights: Optional[AllocationWeights] = None,
        default_algorithm: AllocationAlgorithm = AllocationAlgorithm.HYBRID,
        **kwargs: Any,
    ):
        super().__init__(service_name="AllocationEngine", **kwargs)
        self.ledger = ledger
        self.registry = registry or ledger.registry
        self.default_weights = default_weights or AllocationWeights()
        self.default_algorithm = default_algorithm

    def allocate(
        self,
        order: Order,
        warehouses: list[Warehouse],
        algorithm: Union[AllocationAlgorithm, str, None] = None,
        weights: Optional[AllocationWeights] = None,
    ) -> AllocationResult:
        """Allocates an order; an order nobody can ship is a ``failed`` result."""
        algorithm = AllocationAlgorithm(algorithm or self.default_algorithm)
        weights = weights or self.default_weights
        self._validate_order(order)

        if algorithm != AllocationAlgorithm.INVENTORY and order.customer_location is None:
            raise MissingLocationError(
                f"Order {order.id} has no customer location; required for {algorithm.value} allocation"
            )

        candidates = self._rank(order, self._candidates(order, warehouses), algorithm, weights)

        if algorithm == AllocationAlgorithm.INVENTORY:
            allocations = self._allocate_per_item(order, candidates)
        else:
            allocations = self._allocate_single(order, candidates)
        if allocations is None:
            allocations = self._allocate_partial(order, candidates)

        result = self._build_result(order, allocations)

        self.log_decision(
            decision_type="order_allocation",
            input_data={
                "order_id": order.id,
                "algorithm": algorithm.value,
                "items": {i.product_id: i.quantity for i in order.items},
                "candidates": [c.warehouse.id for c in candidates],
            },
            output_data={
                "status": result.status.value,
                "warehouses": [a.warehouse_id for a in result.allocations],
                "allocated": result.total_allocated(),
                "shortfall": sum(u.shortfall for u in result.unallocated_items),
            },
            reasoning=self._reasoning(result, algorithm),
        )
        logger.info(
            "Order %s allocated (%s): %s from %d warehouse(s)",
            order.id, algorithm.value, result.status.value, len(result.allocations),
        )
        return result

    def get_optimal_warehouse(
        self,
        order: Order,
        algorithm: Union[AllocationAlgorithm, str] = AllocationAlgorithm.HYBRID,
        weights: Optional[AllocationWeights] = None,
    ) -> Optional[Warehouse]:
        """First warehouse of the allocation over all active warehouses, or None."""
        result = self.allocate(order, self.registry.list_active(), algorithm, weights)
        if not result.allocations:
            return None
        return self.registry.get(result.allocations[0].warehouse_id)

    # --- Candidates and ranking ---

    @staticmethod
    def _validate_order(order: Order) -> None:
        if not order.items:
            raise ValidationError(f"Order {order.id} has no items")
        for item in order.items:
            if not isinstance(item.quantity, int) or item.quantity <= 0:
                raise ValidationError(
                    f"Order {order.id}: quantity for {item.product_id} must be a positive integer"
                )

    def _candidates(self, order: Order, warehouses: list[Warehouse]) -> list[_Candidate]:
        product_ids = {item.product_id for item in order.items}
        candidates = []
        for warehouse in warehouses:
            if not warehouse.is_active:
                continue
            candidate = _Candidate(warehouse=warehouse, stock={})
            for product_id in product_ids:
                level = self.ledger.get_level(product_id, warehouse.id)
                if level is not None:
                    candidate.stock[product_id] = level
            if order.customer_location is not None and warehouse.coordinates is not None:
                candidate.distance = haversine_km(warehouse.coordinates, order.customer_location)
                candidate.cost = estimate_shipping_cost(candidate.distance, order.total_units)
            candidates.append(candidate)
        return candidates

    def _rank(
        self,
        order: Order,
        candidates: list[_Candidate],
        algorithm: AllocationAlgorithm,
        weights: AllocationWeights,
    ) -> list[_Candidate]:
        if algorithm == AllocationAlgorithm.INVENTORY:
            return sorted(candidates, key=lambda c: c.total_available(order), reverse=True)

        located = [c for c in candidates if c.distance is not None]
        if algorithm == AllocationAlgorithm.NEAREST:
            return sorted(located, key=lambda c: c.distance)
        if algorithm == AllocationAlgorithm.COST:
            return sorted(located, key=lambda c: c.cost)

        for c in located:
            c.score = (
                (1 - min(c.distance / DISTANCE_SCALE_KM, 1)) * weights.distance
                + (c.total_available(order) / INVENTORY_SCALE_UNITS) * weights.inventory
                + (1 - min(c.cost / COST_SCALE, 1)) * weights.cost
            )
            logger.debug("Hybrid score %s: %.4f", c.warehouse.code, c.score)
        return sorted(located, key=lambda c: c.score, reverse=True)

    # --- Strategies ---

    def _allocate_single(self, order: Order, candidates: list[_Candidate]) -> Optional[list[WarehouseAllocation]]:
        for candidate in candidates:
            if candidate.can_fulfill(order):
                items = [
                    AllocatedItem(item.product_id, item.quantity, candidate.location_ids(item.product_id))
                    for item in order.items
                ]
                return [self._allocation(order, candidate, items)]
        return None

    def _allocate_per_item(self, order: Order, candidates: list[_Candidate]) -> Optional[list[WarehouseAllocation]]:
        """Each line goes whole to the warehouse with the most stock for it."""
        drawn: dict[tuple[str, str], int] = {}
        grouped: dict[str, list[AllocatedItem]] = {}
        by_id = {c.warehouse.id: c for c in candidates}

        for item in order.items:
            def remaining(c: _Candidate) -> int:
                return c.available(item.product_id) - drawn.get((c.warehouse.id, item.product_id), 0)

            capable = [c for c in candidates if remaining(c) >= item.quantity]
            if not capable:
                return None
            best = max(capable, key=remaining)
            key = (best.warehouse.id, item.product_id)
            drawn[key] = drawn.get(key, 0) + item.quantity
            grouped.setdefault(best.warehouse.id, []).append(
                AllocatedItem(item.product_id, item.quantity, best.location_ids(item.product_id))
            )

        return [self._allocation(order, by_id[wid], items) for wid, items in grouped.items()]

    def _allocate_partial(self, order: Order, candidates: list[_Candidate]) -> list[WarehouseAllocation]:
        """Greedy draw over the ranked candidates, item by item."""
        drawn: dict[tuple[str, str], int] = {}
        grouped: dict[str, list[AllocatedItem]] = {}
        by_id = {c.warehouse.id: c for c in candidates}

        for item in order.items:
            needed = item.quantity
            for candidate in candidates:
                if needed == 0:
                    break
                key = (candidate.warehouse.id, item.product_id)
                free = candidate.available(item.product_id) - drawn.get(key, 0)
                if free <= 0:
                    continue
                take = min(free, needed)
                drawn[key] = drawn.get(key, 0) + take
                needed -= take
                grouped.setdefault(candidate.warehouse.id, []).append(
                    AllocatedItem(item.product_id, take, candidate.location_ids(item.product_id))
                )

        return [self._allocation(order, by_id[wid], items) for wid, items in grouped.items()]

    @staticmethod
    def _allocation(order: Order, candidate: _Candidate, items: list[AllocatedItem]) -> WarehouseAllocation:
        allocation = WarehouseAllocation(
            warehouse_id=candidate.warehouse.id,
            warehouse_name=candidate.warehouse.name,
            items=items,
        )
        if candidate.distance is not None:
            allocation.distance = round(candidate.distance, 2)
            allocation.estimated_shipping_cost = round(
                estimate_shipping_cost(candidate.distance, allocation.total_units), 2
            )
            allocation.estimated_delivery_days = estimate_delivery_days(candidate.distance)
        return allocation

    # --- Result ---

    @staticmethod
    def _build_result(order: Order, allocations: list[WarehouseAllocation]) -> AllocationResult:
        result = AllocationResult(order_id=order.id, allocations=allocations)

        requested: dict[str, int] = {}
        for item in order.items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        for product_id, quantity in requested.items():
            allocated = result.total_allocated(product_id)
            if allocated < quantity:
                result.unallocated_items.append(
                    UnallocatedItem(product_id, quantity, allocated, quantity - allocated)
                )

        if not result.unallocated_items:
            result.status = AllocationStatus.FULL
        elif result.total_allocated() == 0:
            result.status = AllocationStatus.FAILED
        else:
            result.status = AllocationStatus.PARTIAL
        return result

    @staticmethod
    def _reasoning(result: AllocationResult, algorithm: AllocationAlgorithm) -> str:
        if result.status == AllocationStatus.FAILED:
            return f"No warehouse holds available stock for any item ({algorithm.value})."
        names = ", ".join(a.warehouse_name for a in result.allocations)
        if result.status == AllocationStatus.PARTIAL:
            missing = ", ".join(f"{u.product_id} x{u.shortfall}" for u in result.unallocated_items)
            return f"Partially allocated from {names}; short: {missing}."
        return f"Fully allocated from {names} ({algorithm.value})."
