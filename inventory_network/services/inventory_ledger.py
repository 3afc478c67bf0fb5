"""Inventory Ledger - per-(product, warehouse) stock levels.

Every mutation goes through ``_write_rows``: it recomputes ``available``,
rejects negative stock before anything is persisted, bumps the row version
(checked by the repository), writes an audit entry and undoes the rows it
already wrote if a later write fails. Read-modify-write sequences hold the
row locks of every row they touch. Units leaving a row whose stock is
binned come out of its bins, smallest first, once the unbinned stock is
used up.
"""

from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Iterator, Optional

from inventory_network.exceptions import (
    ConcurrentModificationError,
    InsufficientInventoryError,
    NotFoundError,
    ValidationError,
)
from inventory_network.models.allocation import AllocationResult
from inventory_network.models.warehouse import (
    CountItem,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryLevel,
    LocationQuantity,
    LocationStock,
    WarehouseLocation,
    inventory_key,
)
from inventory_network.services.base_service import BaseService
from inventory_network.services.locking import ResourceLock
from inventory_network.services.stock_validator import StockValidator
from inventory_network.services.warehouse_registry import WarehouseRegistry
from inventory_network.storage.base import Repository

logger = logging.getLogger(__name__)

COUNT_INTERVAL = timedelta(days=30)


@dataclass
class StockChange:
    """Signed deltas for one ledger row."""

    product_id: str
    warehouse_id: str
    total_delta: int = 0
    reserved_delta: int = 0
    in_transit_delta: int = 0

    @property
    def key(self) -> str:
        return inventory_key(self.product_id, self.warehouse_id)


def _location_key(location_id: str) -> str:
    return f"location:{location_id}"


def _count_key(count_id: str) -> str:
    return f"count:{count_id}"


def _shift_location(level: InventoryLevel, location_id: str, delta: int) -> None:
    for entry in level.by_location:
        if entry.location_id == location_id:
            entry.quantity += delta
            break
    else:
        level.by_location.append(LocationQuantity(location_id=location_id, quantity=delta))
    level.by_location = [e for e in level.by_location if e.quantity != 0]


def _trim_bins(level: InventoryLevel, limit: int) -> list[tuple[str, int]]:
    """Takes up to ``limit`` units out of the bin breakdown, smallest bins first,
    until the bins hold no more than the row total."""
    excess = min(sum(e.quantity for e in level.by_location) - level.total_quantity, limit)
    draws = []
    for entry in sorted(level.by_location, key=lambda e: e.quantity):
        if excess <= 0:
            break
        take = min(entry.quantity, excess)
        entry.quantity -= take
        excess -= take
        draws.append((entry.location_id, take))
    level.by_location = [e for e in level.by_location if e.quantity > 0]
    return draws


def _shift_bin(location: WarehouseLocation, product_id: str, delta: int) -> None:
    for entry in location.current_stock:
        if entry.product_id == product_id:
            entry.quantity += delta
            break
    else:
        location.current_stock.append(LocationStock(product_id=product_id, quantity=delta))
    location.current_stock = [s for s in location.current_stock if s.quantity != 0]


class InventoryLedger(BaseService):
    """Stock rows, reservations, bin stock and cycle counts."""

    def __init__(
        self,
        repository: Repository[InventoryLevel],
        registry: WarehouseRegistry,
        count_repository: Optional[Repository[InventoryCount]] = None,
        validator: Optional[StockValidator] = None,
        locks: Optional[ResourceLock] = None,
        lock_timeout: float = 10.0,
        **kwargs: Any,
    ):
        super().__init__(service_name="InventoryLedger", **kwargs)
        self.repository = repository
        self.registry = registry
        self.count_repository = count_repository
        self.validator = validator or StockValidator()
        self.locks = locks or ResourceLock(timeout=lock_timeout)

    @contextmanager
    def locked(self, keys: Iterable[str]) -> Iterator[None]:
        """Holds the row locks for the given ledger keys."""
        with self.locks.hold(keys, owner=self.service_name):
            yield

    # --- Reads ---

    def get_level(self, product_id: str, warehouse_id: str) -> Optional[InventoryLevel]:
        return self.repository.get(inventory_key(product_id, warehouse_id))

    def get_available(self, product_id: str, warehouse_id: str) -> int:
        level = self.get_level(product_id, warehouse_id)
        return level.available if level else 0

    def list_levels(self) -> list[InventoryLevel]:
        return self.repository.list()

    def list_by_product(self, product_id: str) -> list[InventoryLevel]:
        return self.repository.find(product_id=product_id)

    def list_by_warehouse(self, warehouse_id: str) -> list[InventoryLevel]:
        return self.repository.find(warehouse_id=warehouse_id)

    def snapshot(self) -> list[InventoryLevel]:
        """Read-consistent copy of every row: all row locks are held while reading."""
        keys = [level.key for level in self.repository.list()]
        with self.locked(keys):
            return self.repository.list()

    def total_by_product(self, product_id: str) -> int:
        return sum(l.total_quantity for l in self.list_by_product(product_id))

    def available_by_product(self, product_id: str) -> int:
        return sum(l.available for l in self.list_by_product(product_id))

    def get_low_stock_items(self, warehouse_id: str) -> list[InventoryLevel]:
        return [
            l for l in self.list_by_warehouse(warehouse_id)
            if l.reorder_point and l.total_quantity <= l.reorder_point
        ]

    def get_overstock_items(self, warehouse_id: str) -> list[InventoryLevel]:
        return [
            l for l in self.list_by_warehouse(warehouse_id)
            if l.max_stock and l.total_quantity > l.max_stock
        ]

    # --- Write path ---

    def _blank(self, product_id: str, warehouse_id: str) -> InventoryLevel:
        return InventoryLevel(product_id=product_id, warehouse_id=warehouse_id, last_count_date=self.now())

    @staticmethod
    def _check_row(level: InventoryLevel) -> None:
        where = f"product {level.product_id} in warehouse {level.warehouse_id}"
        for name in ("total_quantity", "reserved", "in_transit"):
            value = getattr(level, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{name} must be an integer for {where}: {value!r}")
            if value < 0:
                raise InsufficientInventoryError(f"Insufficient inventory for {where}: {name} would be {value}")
        if level.available < 0:
            raise InsufficientInventoryError(
                f"Insufficient inventory for {where}: available would be {level.available}"
            )
        if any(e.quantity < 0 for e in level.by_location):
            raise InsufficientInventoryError(f"Insufficient bin stock for {where}")

    def _write_rows(
        self,
        updates: list[tuple[Optional[InventoryLevel], InventoryLevel]],
        operation: str,
        triggered_by: str,
        transfer_id: Optional[str] = None,
    ) -> list[InventoryLevel]:
        for _, after in updates:
            after.available = after.total_quantity - after.reserved - after.in_transit
            self._check_row(after)

        written: list[tuple[Optional[InventoryLevel], InventoryLevel]] = []
        try:
            for before, after in updates:
                expected = before.version if before else 0
                after.version = expected + 1
                self.repository.upsert(after.key, after, expected_version=expected)
                written.append((before, after))
        except Exception as e:
            logger.error("Ledger write rolled back (%s): %s", operation, e)
            self._restore(written)
            raise

        for before, after in written:
            self.validator.log_stock_change(operation, before, after, triggered_by, transfer_id)
        return [after for _, after in written]

    def _restore(self, written: list[tuple[Optional[InventoryLevel], InventoryLevel]]) -> None:
        for before, after in reversed(written):
            if before is None:
                self.repository.delete(after.key)
            else:
                self.repository.upsert(before.key, before)

    def apply_changes(
        self,
        changes: Iterable[StockChange],
        operation: str = "adjustment",
        triggered_by: str = "ledger",
        transfer_id: Optional[str] = None,
    ) -> list[InventoryLevel]:
        """Applies deltas to several rows atomically; missing rows start at zero."""
        merged: "OrderedDict[str, StockChange]" = OrderedDict()
        for change in changes:
            current = merged.get(change.key)
            if current is None:
                merged[change.key] = copy.copy(change)
            else:
                current.total_delta += change.total_delta
                current.reserved_delta += change.reserved_delta
                current.in_transit_delta += change.in_transit_delta

        for warehouse_id in {c.warehouse_id for c in merged.values()}:
            self.registry.require(warehouse_id)

        shrinking = [key for key, change in merged.items() if change.total_delta < 0]
        bin_keys = self._bin_keys(shrinking)
        with self.locked(list(merged.keys()) + bin_keys):
            updates = []
            for key, change in merged.items():
                before = self.repository.get(key)
                after = copy.deepcopy(before) if before else self._blank(change.product_id, change.warehouse_id)
                after.total_quantity += change.total_delta
                after.reserved += change.reserved_delta
                after.in_transit += change.in_transit_delta
                updates.append((before, after))
            return self._commit(updates, operation, triggered_by, transfer_id, locked_bins=bin_keys)

    def _bin_keys(self, keys: Iterable[str]) -> list[str]:
        """Lock keys of the bins currently holding stock of the given rows."""
        bin_keys = []
        for key in keys:
            level = self.repository.get(key)
            if level is not None:
                bin_keys.extend(_location_key(e.location_id) for e in level.by_location)
        return bin_keys

    def _commit(
        self,
        updates: list[tuple[Optional[InventoryLevel], InventoryLevel]],
        operation: str,
        triggered_by: str,
        transfer_id: Optional[str] = None,
        locked_bins: Iterable[str] = (),
    ) -> list[InventoryLevel]:
        """Writes rows; units leaving a binned row are drawn from its bins."""
        draws: dict[str, list[tuple[str, int]]] = {}
        for before, after in updates:
            shrink = (before.total_quantity if before else 0) - after.total_quantity
            if shrink > 0:
                for location_id, quantity in _trim_bins(after, shrink):
                    draws.setdefault(location_id, []).append((after.product_id, quantity))
        if not draws:
            return self._write_rows(updates, operation, triggered_by, transfer_id)

        locked_bins = set(locked_bins)
        locations = []
        for location_id, lines in draws.items():
            if _location_key(location_id) not in locked_bins:
                raise ConcurrentModificationError(f"Bin {location_id} was restocked while drawing from it")
            location = self.registry.require_location(location_id)
            for product_id, quantity in lines:
                if location.quantity_of(product_id) < quantity:
                    raise InsufficientInventoryError(
                        f"Bin {location.barcode} holds {location.quantity_of(product_id)} of {product_id}, "
                        f"cannot draw {quantity}"
                    )
                _shift_bin(location, product_id, -quantity)
            locations.append(location)

        levels = self._write_with_locations(updates, locations, operation, triggered_by, transfer_id)
        for warehouse_id in {l.warehouse_id for l in locations if not l.current_stock}:
            self.registry.refresh_capacity(warehouse_id)
        return levels

    def _update_row(self, product_id: str, warehouse_id: str, operation: str, **fields: Any) -> InventoryLevel:
        self.registry.require(warehouse_id)
        key = inventory_key(product_id, warehouse_id)
        with self.locked([key]):
            before = self.repository.get(key)
            after = copy.deepcopy(before) if before else self._blank(product_id, warehouse_id)
            for name, value in fields.items():
                setattr(after, name, value)
            return self._write_rows([(before, after)], operation, triggered_by="ledger")[0]

    # --- Stock adjustments ---

    @staticmethod
    def _positive(quantity: int) -> None:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(f"Quantity must be a positive integer: {quantity!r}")

    def receive_stock(
        self, product_id: str, warehouse_id: str, quantity: int, location_id: Optional[str] = None
    ) -> InventoryLevel:
        """Books incoming units, optionally into a specific bin."""
        self._positive(quantity)
        if location_id is not None:
            return self.add_stock_to_location(location_id, product_id, quantity)
        return self.apply_changes(
            [StockChange(product_id, warehouse_id, total_delta=quantity)], operation="receipt"
        )[0]

    def adjust_stock(self, product_id: str, warehouse_id: str, delta: int, reason: str = "adjustment") -> InventoryLevel:
        return self.apply_changes(
            [StockChange(product_id, warehouse_id, total_delta=delta)], operation=reason
        )[0]

    def set_stock_policy(
        self,
        product_id: str,
        warehouse_id: str,
        reorder_point: Optional[int] = None,
        max_stock: Optional[int] = None,
    ) -> InventoryLevel:
        if reorder_point is not None and reorder_point < 0:
            raise ValueError("Reorder point cannot be negative")
        if max_stock is not None and max_stock < 0:
            raise ValueError("Max stock cannot be negative")
        policy = {"reorder_point": reorder_point, "max_stock": max_stock}
        return self._update_row(
            product_id, warehouse_id, "policy_update",
            **{name: value for name, value in policy.items() if value is not None},
        )

    # --- Reservations ---

    def reserve(self, product_id: str, warehouse_id: str, quantity: int, order_id: str = "") -> InventoryLevel:
        self._positive(quantity)
        return self.apply_changes(
            [StockChange(product_id, warehouse_id, reserved_delta=quantity)],
            operation="reservation",
            triggered_by=f"order:{order_id}" if order_id else "ledger",
        )[0]

    def release_reservation(self, product_id: str, warehouse_id: str, quantity: int, order_id: str = "") -> InventoryLevel:
        self._positive(quantity)
        return self.apply_changes(
            [StockChange(product_id, warehouse_id, reserved_delta=-quantity)],
            operation="reservation_release",
            triggered_by=f"order:{order_id}" if order_id else "ledger",
        )[0]

    def fulfill_reservation(self, product_id: str, warehouse_id: str, quantity: int, order_id: str = "") -> InventoryLevel:
        """Ships reserved units: they leave both ``reserved`` and ``total_quantity``."""
        self._positive(quantity)
        return self.apply_changes(
            [StockChange(product_id, warehouse_id, total_delta=-quantity, reserved_delta=-quantity)],
            operation="shipment",
            triggered_by=f"order:{order_id}" if order_id else "ledger",
        )[0]

    def commit_allocation(self, result: AllocationResult) -> list[InventoryLevel]:
        """Reserves every allocated line of an allocation result, all or nothing.

        Availability is re-checked under lock, since the result may have been
        computed against stock that has changed since.
        """
        changes = [
            StockChange(item.product_id, allocation.warehouse_id, reserved_delta=item.quantity)
            for allocation in result.allocations
            for item in allocation.items
            if item.quantity > 0
        ]
        if not changes:
            return []
        levels = self.apply_changes(changes, operation="reservation", triggered_by=f"order:{result.order_id}")
        logger.info("Reservations committed for order %s (%d rows)", result.order_id, len(levels))
        return levels

    # --- Bin stock ---

    def add_stock_to_location(self, location_id: str, product_id: str, quantity: int) -> InventoryLevel:
        self._positive(quantity)
        warehouse_id = self.registry.require_location(location_id).warehouse_id
        key = inventory_key(product_id, warehouse_id)

        with self.locked([key, _location_key(location_id)]):
            location = self.registry.require_location(location_id)
            was_empty = not location.current_stock

            before = self.repository.get(key)
            after = copy.deepcopy(before) if before else self._blank(product_id, warehouse_id)
            after.total_quantity += quantity
            _shift_location(after, location_id, quantity)
            _shift_bin(location, product_id, quantity)

            level = self._write_with_locations([(before, after)], [location], "location_receipt")[0]

        if was_empty:
            self.registry.refresh_capacity(warehouse_id)
        return level

    def remove_stock_from_location(self, location_id: str, product_id: str, quantity: int) -> InventoryLevel:
        self._positive(quantity)
        warehouse_id = self.registry.require_location(location_id).warehouse_id
        key = inventory_key(product_id, warehouse_id)

        with self.locked([key, _location_key(location_id)]):
            location = self.registry.require_location(location_id)
            held = location.quantity_of(product_id)
            if held < quantity:
                raise InsufficientInventoryError(
                    f"Insufficient stock in location {location.barcode}: has {held}, requested {quantity}"
                )
            before = self.repository.get(key)
            if before is None:
                raise InsufficientInventoryError(f"No inventory row for {product_id} in {warehouse_id}")

            after = copy.deepcopy(before)
            after.total_quantity -= quantity
            _shift_location(after, location_id, -quantity)
            _shift_bin(location, product_id, -quantity)

            level = self._write_with_locations([(before, after)], [location], "location_issue")[0]

        if not location.current_stock:
            self.registry.refresh_capacity(warehouse_id)
        return level

    def move_stock_between_locations(
        self, from_location_id: str, to_location_id: str, product_id: str, quantity: int
    ) -> InventoryLevel:
        """Moves units between two bins of the same warehouse; totals are unchanged."""
        self._positive(quantity)
        source = self.registry.require_location(from_location_id)
        target = self.registry.require_location(to_location_id)
        if source.warehouse_id != target.warehouse_id:
            raise ValidationError("Locations must be in the same warehouse")
        if from_location_id == to_location_id:
            raise ValidationError("Source and target location are the same")

        warehouse_id = source.warehouse_id
        key = inventory_key(product_id, warehouse_id)
        lock_keys = [key, _location_key(from_location_id), _location_key(to_location_id)]

        with self.locked(lock_keys):
            source = self.registry.require_location(from_location_id)
            target = self.registry.require_location(to_location_id)
            held = source.quantity_of(product_id)
            if held < quantity:
                raise InsufficientInventoryError(
                    f"Insufficient stock in location {source.barcode}: has {held}, requested {quantity}"
                )
            before = self.repository.get(key)
            if before is None:
                raise InsufficientInventoryError(f"No inventory row for {product_id} in {warehouse_id}")

            after = copy.deepcopy(before)
            _shift_location(after, from_location_id, -quantity)
            _shift_location(after, to_location_id, quantity)
            _shift_bin(source, product_id, -quantity)
            _shift_bin(target, product_id, quantity)

            level = self._write_with_locations([(before, after)], [source, target], "location_move")[0]

        self.registry.refresh_capacity(warehouse_id)
        return level

    def _write_with_locations(
        self,
        updates: list[tuple[Optional[InventoryLevel], InventoryLevel]],
        locations: list[WarehouseLocation],
        operation: str,
        triggered_by: str = "ledger",
        transfer_id: Optional[str] = None,
    ) -> list[InventoryLevel]:
        originals = [self.registry.require_location(l.id) for l in locations]
        levels = self._write_rows(updates, operation, triggered_by, transfer_id)
        saved: list[WarehouseLocation] = []
        try:
            for location in locations:
                self.registry.save_location(location)
                saved.append(location)
        except Exception as e:
            logger.error("Bin update rolled back (%s): %s", operation, e)
            for original in originals[: len(saved)]:
                self.registry.locations.upsert(original.id, original)
            self._restore([(before, after) for before, after in updates])
            raise
        return levels

    # --- Counts ---

    def _counts(self) -> Repository[InventoryCount]:
        if self.count_repository is None:
            raise ValidationError("Inventory counts are not configured for this ledger")
        return self.count_repository

    def create_count(
        self,
        warehouse_id: str,
        counted: dict[str, int],
        count_type: CountType = CountType.CYCLE,
        location_id: Optional[str] = None,
        conducted_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> InventoryCount:
        """Records physical counts; expected quantities come from the ledger."""
        self.registry.require(warehouse_id)
        if location_id is not None:
            self.registry.require_location(location_id)
        for product_id, actual in counted.items():
            if actual < 0:
                raise ValidationError(f"Counted quantity cannot be negative: {product_id}={actual}")

        items = []
        for product_id, actual in counted.items():
            level = self.get_level(product_id, warehouse_id)
            items.append(CountItem(product_id, expected_qty=level.total_quantity if level else 0, actual_qty=actual))

        count = InventoryCount(
            warehouse_id=warehouse_id,
            items=items,
            type=count_type,
            status=CountStatus.IN_PROGRESS,
            location_id=location_id,
            scheduled_date=self.now(),
            started_at=self.now(),
            conducted_by=conducted_by,
            notes=notes,
        )
        self._counts().upsert(count.id, count)
        return count

    def get_count(self, count_id: str) -> InventoryCount:
        count = self._counts().get(count_id)
        if count is None:
            raise NotFoundError(f"Inventory count not found: {count_id}")
        return count

    def complete_count(self, count_id: str) -> InventoryCount:
        """Applies each variance to the ledger and stamps the count date."""
        with self.locked([_count_key(count_id)]):
            count = self.get_count(count_id)
            if count.status not in (CountStatus.SCHEDULED, CountStatus.IN_PROGRESS):
                raise ValidationError(f"Count {count_id} is already {count.status.value}")

            now = self.now()
            keys = [inventory_key(item.product_id, count.warehouse_id) for item in count.items]
            bin_keys = self._bin_keys(
                inventory_key(item.product_id, count.warehouse_id) for item in count.items if item.variance < 0
            )
            with self.locked(keys + bin_keys):
                updates = []
                for item in count.items:
                    key = inventory_key(item.product_id, count.warehouse_id)
                    before = self.repository.get(key)
                    after = copy.deepcopy(before) if before else self._blank(item.product_id, count.warehouse_id)
                    after.total_quantity += item.variance
                    after.last_count_date = now
                    after.next_count_schedule = now + COUNT_INTERVAL
                    updates.append((before, after))
                self._commit(updates, "count_adjustment", f"count:{count_id}", locked_bins=bin_keys)

            count.status = CountStatus.COMPLETED
            count.completed_at = now
            self._counts().upsert(count.id, count)

        variances = {i.product_id: i.variance for i in count.items if i.variance}
        self.log_decision(
            decision_type="count_completed",
            input_data={"count_id": count_id, "warehouse_id": count.warehouse_id},
            output_data={"variances": variances},
            reasoning=f"{len(variances)} of {len(count.items)} counted products had a variance.",
        )
        return count

    def cancel_count(self, count_id: str) -> InventoryCount:
        with self.locked([_count_key(count_id)]):
            count = self.get_count(count_id)
            if count.status == CountStatus.COMPLETED:
                raise ValidationError(f"Count {count_id} is already completed")
            count.status = CountStatus.CANCELLED
            self._counts().upsert(count.id, count)
        return count
