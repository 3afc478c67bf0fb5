from inventory_network.models.allocation import (
    AllocatedItem,
    AllocationAlgorithm,
    AllocationResult,
    AllocationStatus,
    AllocationWeights,
    Order,
    OrderItem,
    OrderPriority,
    UnallocatedItem,
    WarehouseAllocation,
)
from inventory_network.models.audit import AuditLogEntry, ServiceDecision, ValidationResult
from inventory_network.models.forecast import (
    AlgorithmComparison,
    DemandForecast,
    DemandPoint,
    ForecastAlgorithm,
    ForecastPeriod,
    ForecastPoint,
    Seasonality,
    Trend,
)
from inventory_network.models.transfer import (
    InventoryTransfer,
    PlanSubmission,
    RebalancingPlan,
    TransferItem,
    TransferReason,
    TransferStatus,
)
from inventory_network.models.warehouse import (
    Address,
    Capacity,
    CapacityStatus,
    Coordinates,
    CountItem,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryLevel,
    LocationQuantity,
    LocationStock,
    OperatingHours,
    Warehouse,
    WarehouseLocation,
    WarehouseType,
    WarehouseZone,
    ZoneType,
    inventory_key,
)

__all__ = [
    "Address",
    "AlgorithmComparison",
    "AllocatedItem",
    "AllocationAlgorithm",
    "AllocationResult",
    "AllocationStatus",
    "AllocationWeights",
    "AuditLogEntry",
    "Capacity",
    "CapacityStatus",
    "Coordinates",
    "CountItem",
    "CountStatus",
    "CountType",
    "DemandForecast",
    "DemandPoint",
    "ForecastAlgorithm",
    "ForecastPeriod",
    "ForecastPoint",
    "InventoryCount",
    "InventoryLevel",
    "InventoryTransfer",
    "LocationQuantity",
    "LocationStock",
    "OperatingHours",
    "Order",
    "OrderItem",
    "OrderPriority",
    "PlanSubmission",
    "RebalancingPlan",
    "Seasonality",
    "ServiceDecision",
    "TransferItem",
    "TransferReason",
    "TransferStatus",
    "Trend",
    "UnallocatedItem",
    "ValidationResult",
    "Warehouse",
    "WarehouseAllocation",
    "WarehouseLocation",
    "WarehouseType",
    "WarehouseZone",
    "ZoneType",
    "inventory_key",
]
