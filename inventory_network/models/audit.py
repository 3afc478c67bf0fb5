"""Decision and stock-change audit records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class ServiceDecision:
    decision_id: str
    service_name: str
    decision_type: str
    input_data: dict
    output_data: dict
    reasoning: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())


@dataclass
class AuditLogEntry:
    entry_id: str
    operation_type: str
    warehouse_id: str
    product_id: str
    quantity_before: int
    quantity_after: int
    change_amount: int
    triggered_by: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    transfer_id: Optional[str] = None
    details: Optional[dict] = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
