from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from inventory_network.config import Settings, get_settings
from inventory_network.models.audit import AuditLogEntry, ServiceDecision
from inventory_network.models.transfer import InventoryTransfer
from inventory_network.models.warehouse import (
    InventoryCount,
    InventoryLevel,
    Warehouse,
    WarehouseLocation,
    WarehouseZone,
)
from inventory_network.storage.base import Repository
from inventory_network.storage.dynamodb import DynamoDBRepository, get_dynamodb_resource
from inventory_network.storage.memory import InMemoryRepository


@dataclass
class Repositories:
    warehouses: Repository[Warehouse]
    locations: Repository[WarehouseLocation]
    zones: Repository[WarehouseZone]
    inventory: Repository[InventoryLevel]
    counts: Repository[InventoryCount]
    transfers: Repository[InventoryTransfer]
    decisions: Repository[ServiceDecision]
    audit: Repository[AuditLogEntry]


def in_memory_repositories() -> Repositories:
    return Repositories(
        warehouses=InMemoryRepository(),
        locations=InMemoryRepository(),
        zones=InMemoryRepository(),
        inventory=InMemoryRepository(),
        counts=InMemoryRepository(),
        transfers=InMemoryRepository(),
        decisions=InMemoryRepository(),
        audit=InMemoryRepository(),
    )


def dynamodb_repositories(settings: Settings, dynamodb_resource: Optional[Any] = None) -> Repositories:
    dynamodb = dynamodb_resource or get_dynamodb_resource(settings.region_name)

    def repo(table: str, record_type: type) -> DynamoDBRepository:
        return DynamoDBRepository(dynamodb.Table(settings.table_name(table)), record_type)

    return Repositories(
        warehouses=repo("Warehouses", Warehouse),
        locations=repo("WarehouseLocations", WarehouseLocation),
        zones=repo("WarehouseZones", WarehouseZone),
        inventory=repo("Inventory", InventoryLevel),
        counts=repo("InventoryCounts", InventoryCount),
        transfers=repo("Transfers", InventoryTransfer),
        decisions=repo("ServiceDecisions", ServiceDecision),
        audit=repo("StockAuditLog", AuditLogEntry),
    )


def build_repositories(
    settings: Optional[Settings] = None, dynamodb_resource: Optional[Any] = None
) -> Repositories:
    settings = settings or get_settings()
    if settings.storage_backend == "dynamodb":
        return dynamodb_repositories(settings, dynamodb_resource)
    return in_memory_repositories()


__all__ = [
    "DynamoDBRepository",
    "InMemoryRepository",
    "Repositories",
    "Repository",
    "build_repositories",
    "dynamodb_repositories",
    "in_memory_repositories",
]
