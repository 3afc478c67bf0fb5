"""Warehouse Registry - warehouses, bin locations and zones.

- Registration with case-insensitive unique codes
- Soft deactivation and atomic cascading delete
- Location (zone/aisle/shelf/bin) management and barcodes
- Slot capacity bookkeeping and zone utilisation
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Optional, Union

from inventory_network.exceptions import (
    DuplicateCodeError,
    DuplicateLocationError,
    UnknownLocationError,
    UnknownWarehouseError,
    ValidationError,
)
from inventory_network.models.warehouse import (
    CapacityStatus,
    InventoryLevel,
    Warehouse,
    WarehouseLocation,
    WarehouseType,
    WarehouseZone,
)
from inventory_network.services.base_service import BaseService
from inventory_network.storage.base import Repository

logger = logging.getLogger(__name__)

DEFAULT_BARCODE_PREFIX = "WH"


class WarehouseRegistry(BaseService):
    """Owns warehouse, location and zone records."""

    def __init__(
        self,
        warehouses: Repository[Warehouse],
        locations: Repository[WarehouseLocation],
        zones: Repository[WarehouseZone],
        inventory: Optional[Repository[InventoryLevel]] = None,
        **kwargs: Any,
    ):
        super().__init__(service_name="WarehouseRegistry", **kwargs)
        self.warehouses = warehouses
        self.locations = locations
        self.zones = zones
        # Ledger rows, purged with their warehouse
        self.inventory = inventory
        # Serialises check-then-write sequences (code and slot uniqueness)
        self._lock = threading.RLock()

    # --- Warehouses ---

    def register(self, warehouse: Warehouse) -> Warehouse:
        """Registers a new warehouse; the code must be unique (case-insensitive)."""
        with self._lock:
            if self.get_by_code(warehouse.code) is not None:
                raise DuplicateCodeError(f"Warehouse code already exists: {warehouse.code}")
            if self.warehouses.get(warehouse.id) is not None:
                raise ValidationError(f"Warehouse id already exists: {warehouse.id}")

            now = self.now()
            warehouse = dataclasses.replace(warehouse, created_at=now, updated_at=now)
            self.warehouses.upsert(warehouse.id, warehouse)

        logger.info("Warehouse registered: %s (%s)", warehouse.code, warehouse.id)
        return warehouse

    def get(self, warehouse_id: str) -> Optional[Warehouse]:
        return self.warehouses.get(warehouse_id)

    def require(self, warehouse_id: str) -> Warehouse:
        warehouse = self.warehouses.get(warehouse_id)
        if warehouse is None:
            raise UnknownWarehouseError(f"Warehouse not found: {warehouse_id}")
        return warehouse

    def get_by_code(self, code: str) -> Optional[Warehouse]:
        wanted = code.lower()
        for warehouse in self.warehouses.list():
            if warehouse.code.lower() == wanted:
                return warehouse
        return None

    def update(self, warehouse_id: str, **changes: Any) -> Warehouse:
        """Applies field changes; the id is immutable and codes stay unique."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        changes.pop("updated_at", None)

        with self._lock:
            current = self.require(warehouse_id)

            new_code = changes.get("code")
            code_changed = new_code is not None and new_code.lower() != current.code.lower()
            if new_code is not None:
                existing = self.get_by_code(new_code)
                if existing is not None and existing.id != warehouse_id:
                    raise DuplicateCodeError(f"Warehouse code already exists: {new_code}")

            try:
                updated = dataclasses.replace(current, updated_at=self.now(), **changes)
            except TypeError as e:
                raise ValidationError(f"Invalid warehouse field: {e}") from e
            self.warehouses.upsert(warehouse_id, updated)

            if code_changed:
                for location in self.list_locations(warehouse_id):
                    location.barcode = self._barcode(updated.code, location)
                    self.locations.upsert(location.id, location)

        return updated

    def deactivate(self, warehouse_id: str) -> Warehouse:
        """Soft delete: the record stays so inventory rows remain resolvable."""
        warehouse = self.update(warehouse_id, is_active=False)
        logger.info("Warehouse deactivated: %s", warehouse.code)
        return warehouse

    def delete(self, warehouse_id: str) -> bool:
        """Deletes a warehouse with its locations, inventory rows and zones.

        All-or-nothing: if any removal fails, every record already removed is
        written back before the error propagates.
        """
        with self._lock:
            warehouse = self.get(warehouse_id)
            if warehouse is None:
                return False

            removed: list[tuple[Repository, str, Any]] = []

            def remove(repository: Repository, key: str, record: Any) -> None:
                repository.delete(key)
                removed.append((repository, key, record))

            try:
                for location in self.list_locations(warehouse_id):
                    remove(self.locations, location.id, location)
                if self.inventory is not None:
                    for level in self.inventory.find(warehouse_id=warehouse_id):
                        remove(self.inventory, level.key, level)
                for zone in self.list_zones(warehouse_id):
                    remove(self.zones, zone.id, zone)
                remove(self.warehouses, warehouse_id, warehouse)
            except Exception as e:
                logger.error("Warehouse delete rolled back (%s): %s", warehouse_id, e)
                for repository, key, record in reversed(removed):
                    repository.upsert(key, record)
                raise

        self.log_decision(
            decision_type="warehouse_deleted",
            input_data={"warehouse_id": warehouse_id},
            output_data={"records_removed": len(removed)},
            reasoning=f"Warehouse {warehouse.code} deleted with {len(removed) - 1} dependent records.",
        )
        return True

    def list_all(self) -> list[Warehouse]:
        return self.warehouses.list()

    def list_active(self) -> list[Warehouse]:
        return [w for w in self.warehouses.list() if w.is_active]

    def list_by_type(self, warehouse_type: Union[WarehouseType, str]) -> list[Warehouse]:
        warehouse_type = WarehouseType(warehouse_type)
        return [w for w in self.warehouses.list() if w.type == warehouse_type]

    # --- Locations ---

    @staticmethod
    def _barcode(code: str, location: WarehouseLocation) -> str:
        return f"{code}-{location.zone}{location.aisle:02d}{location.shelf:02d}{location.bin:02d}"

    def generate_location_barcode(
        self, warehouse_id: str, zone: str, aisle: int, shelf: int, bin: int
    ) -> str:
        """``{warehouseCode}-{zone}{aisle:02}{shelf:02}{bin:02}``."""
        warehouse = self.get(warehouse_id)
        code = warehouse.code if warehouse else DEFAULT_BARCODE_PREFIX
        return f"{code}-{zone}{aisle:02d}{shelf:02d}{bin:02d}"

    def create_location(
        self,
        warehouse_id: str,
        zone: str,
        aisle: int,
        shelf: int,
        bin: int,
        max_weight: Optional[float] = None,
    ) -> WarehouseLocation:
        with self._lock:
            warehouse = self.require(warehouse_id)
            slot = (zone, aisle, shelf, bin)
            if any(l.slot == slot for l in self.list_locations(warehouse_id)):
                raise DuplicateLocationError(
                    f"Location {zone}-{aisle}-{shelf}-{bin} already exists in {warehouse.code}"
                )

            now = self.now()
            location = WarehouseLocation(
                warehouse_id=warehouse_id,
                zone=zone,
                aisle=aisle,
                shelf=shelf,
                bin=bin,
                max_weight=max_weight,
                created_at=now,
                updated_at=now,
            )
            location.barcode = self._barcode(warehouse.code, location)
            self.locations.upsert(location.id, location)
            self.refresh_capacity(warehouse_id)

        return location

    def get_location(self, location_id: str) -> Optional[WarehouseLocation]:
        return self.locations.get(location_id)

    def require_location(self, location_id: str) -> WarehouseLocation:
        location = self.locations.get(location_id)
        if location is None:
            raise UnknownLocationError(f"Location not found: {location_id}")
        return location

    def get_location_by_barcode(self, barcode: str) -> Optional[WarehouseLocation]:
        for location in self.locations.list():
            if location.barcode == barcode:
                return location
        return None

    def update_location(self, location_id: str, **changes: Any) -> WarehouseLocation:
        for immutable in ("id", "warehouse_id", "zone", "aisle", "shelf", "bin", "barcode"):
            changes.pop(immutable, None)
        with self._lock:
            current = self.require_location(location_id)
            try:
                updated = dataclasses.replace(current, updated_at=self.now(), **changes)
            except TypeError as e:
                raise ValidationError(f"Invalid location field: {e}") from e
            self.locations.upsert(location_id, updated)
        return updated

    def save_location(self, location: WarehouseLocation) -> WarehouseLocation:
        """Persists a location whose stock list was changed by the ledger."""
        location.updated_at = self.now()
        self.locations.upsert(location.id, location)
        return location

    def delete_location(self, location_id: str) -> bool:
        with self._lock:
            location = self.get_location(location_id)
            if location is None:
                return False
            if location.current_stock:
                raise ValidationError(f"Location {location.barcode} still holds stock")
            self.locations.delete(location_id)
            self.refresh_capacity(location.warehouse_id)
        return True

    def list_locations(self, warehouse_id: str, zone: Optional[str] = None) -> list[WarehouseLocation]:
        locations = self.locations.find(warehouse_id=warehouse_id)
        if zone is not None:
            locations = [l for l in locations if l.zone == zone]
        return sorted(locations, key=lambda l: l.slot)

    def get_empty_locations(self, warehouse_id: str) -> list[WarehouseLocation]:
        return [l for l in self.list_locations(warehouse_id) if l.is_active and not l.current_stock]

    def get_occupied_locations(self, warehouse_id: str) -> list[WarehouseLocation]:
        return [l for l in self.list_locations(warehouse_id) if l.current_stock]

    def find_available_location(self, warehouse_id: str, product_id: str) -> Optional[WarehouseLocation]:
        """Active bin already holding the product, otherwise the first empty active bin."""
        active = [l for l in self.list_locations(warehouse_id) if l.is_active]
        for location in active:
            if any(s.product_id == product_id for s in location.current_stock):
                return location
        for location in active:
            if not location.current_stock:
                return location
        return None

    # --- Capacity ---

    def refresh_capacity(self, warehouse_id: str) -> Warehouse:
        """Recounts total and used slots from the warehouse's locations."""
        with self._lock:
            warehouse = self.require(warehouse_id)
            locations = self.list_locations(warehouse_id)
            warehouse.capacity.total_slots = len(locations)
            warehouse.capacity.used_slots = sum(1 for l in locations if l.current_stock)
            warehouse.updated_at = self.now()
            self.warehouses.upsert(warehouse_id, warehouse)
        return warehouse

    def get_utilization(self, warehouse_id: str) -> float:
        warehouse = self.get(warehouse_id)
        if warehouse is None or warehouse.capacity.total_slots == 0:
            return 0.0
        return warehouse.capacity.used_slots / warehouse.capacity.total_slots * 100

    def get_capacity_status(self, warehouse_id: str) -> CapacityStatus:
        utilization = self.get_utilization(warehouse_id)
        if utilization >= 95:
            return CapacityStatus.FULL
        if utilization >= 80:
            return CapacityStatus.HIGH
        if utilization >= 50:
            return CapacityStatus.MEDIUM
        return CapacityStatus.LOW

    # --- Zones ---

    def create_zone(self, zone: WarehouseZone) -> WarehouseZone:
        self.require(zone.warehouse_id)
        if zone.aisle_end < zone.aisle_start:
            raise ValidationError(f"Zone {zone.code}: aisle range is reversed")
        self.zones.upsert(zone.id, zone)
        return zone

    def update_zone(self, zone_id: str, **changes: Any) -> Optional[WarehouseZone]:
        changes.pop("id", None)
        zone = self.zones.get(zone_id)
        if zone is None:
            return None
        try:
            updated = dataclasses.replace(zone, **changes)
        except TypeError as e:
            raise ValidationError(f"Invalid zone field: {e}") from e
        self.zones.upsert(zone_id, updated)
        return updated

    def delete_zone(self, zone_id: str) -> bool:
        return self.zones.delete(zone_id)

    def list_zones(self, warehouse_id: str) -> list[WarehouseZone]:
        return self.zones.find(warehouse_id=warehouse_id)

    def get_zone_utilization(self, zone_id: str) -> float:
        zone = self.zones.get(zone_id)
        if zone is None or zone.capacity == 0:
            return 0.0
        return zone.used_capacity / zone.capacity * 100
