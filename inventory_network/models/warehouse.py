"""Warehouse, location and stock-level records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


class WarehouseType(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    REGIONAL = "regional"
    POP_UP = "pop-up"


class ZoneType(str, Enum):
    RECEIVING = "receiving"
    STORAGE = "storage"
    PICKING = "picking"
    PACKING = "packing"
    SHIPPING = "shipping"
    QUARANTINE = "quarantine"


class CountType(str, Enum):
    FULL = "full"
    CYCLE = "cycle"
    SPOT = "spot"


class CountStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CapacityStatus(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FULL = "full"


@dataclass
class Coordinates:
    lat: float
    lng: float


@dataclass
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    coordinates: Optional[Coordinates] = None


@dataclass
class Capacity:
    total_slots: int = 0
    used_slots: int = 0
    volume: Optional[float] = None  # cubic meters


@dataclass
class OperatingHours:
    open: str = "08:00"
    close: str = "18:00"
    timezone: str = "UTC"


@dataclass
class Warehouse:
    code: str
    name: str
    type: WarehouseType = WarehouseType.PRIMARY
    address: Address = field(default_factory=Address)
    capacity: Capacity = field(default_factory=Capacity)
    hours: OperatingHours = field(default_factory=OperatingHours)
    managers: list[str] = field(default_factory=list)
    is_active: bool = True
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        return self.address.coordinates


@dataclass
class LocationStock:
    product_id: str
    quantity: int


@dataclass
class WarehouseLocation:
    warehouse_id: str
    zone: str
    aisle: int
    shelf: int
    bin: int
    barcode: str = ""
    current_stock: list[LocationStock] = field(default_factory=list)
    max_weight: Optional[float] = None
    is_active: bool = True
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def slot(self) -> tuple[str, int, int, int]:
        return (self.zone, self.aisle, self.shelf, self.bin)

    def quantity_of(self, product_id: str) -> int:
        return sum(s.quantity for s in self.current_stock if s.product_id == product_id)


@dataclass
class WarehouseZone:
    warehouse_id: str
    name: str
    code: str
    type: ZoneType = ZoneType.STORAGE
    aisle_start: int = 1
    aisle_end: int = 1
    capacity: int = 0
    used_capacity: int = 0
    is_active: bool = True
    id: str = field(default_factory=new_id)


@dataclass
class LocationQuantity:
    location_id: str
    quantity: int


@dataclass
class InventoryLevel:
    """Stock of one product in one warehouse.

    ``available`` is derived (total - reserved - in_transit) and is rewritten
    by the inventory ledger on every write; values supplied by callers are
    ignored.
    """

    product_id: str
    warehouse_id: str
    total_quantity: int = 0
    reserved: int = 0
    in_transit: int = 0
    available: int = 0
    by_location: list[LocationQuantity] = field(default_factory=list)
    reorder_point: Optional[int] = None
    max_stock: Optional[int] = None
    last_count_date: datetime = field(default_factory=datetime.utcnow)
    next_count_schedule: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.next_count_schedule is None:
            self.next_count_schedule = self.last_count_date + timedelta(days=30)

    @property
    def key(self) -> str:
        return inventory_key(self.product_id, self.warehouse_id)

    @property
    def location_ids(self) -> list[str]:
        return [l.location_id for l in self.by_location if l.quantity > 0]


def inventory_key(product_id: str, warehouse_id: str) -> str:
    return f"{product_id}#{warehouse_id}"


@dataclass
class CountItem:
    product_id: str
    expected_qty: int
    actual_qty: int

    @property
    def variance(self) -> int:
        return self.actual_qty - self.expected_qty


@dataclass
class InventoryCount:
    warehouse_id: str
    items: list[CountItem] = field(default_factory=list)
    type: CountType = CountType.CYCLE
    status: CountStatus = CountStatus.SCHEDULED
    location_id: Optional[str] = None
    scheduled_date: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    conducted_by: Optional[str] = None
    notes: Optional[str] = None
    id: str = field(default_factory=new_id)
