"""Stock consistency checks and the stock-change audit log.

- Negative stock detection over ledger rows
- Stock conservation between two snapshots
- Row invariant checks (derived ``available``, location breakdown)
- Audit entries for every ledger write
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from inventory_network.models.audit import AuditLogEntry, ValidationResult
from inventory_network.models.warehouse import InventoryLevel
from inventory_network.storage.base import Repository

logger = logging.getLogger(__name__)


class StockValidator:
    """Stock consistency and audit log manager."""

    def __init__(self, audit_repository: Optional[Repository[AuditLogEntry]] = None) -> None:
        self.audit_repository = audit_repository
        self._audit_log: list[AuditLogEntry] = []
        # Expected network totals: {product_id: total}
        self._total_stock_registry: dict[str, int] = {}

    def validate_level(self, level: InventoryLevel) -> ValidationResult:
        """Checks one row against the ledger invariants."""
        errors = []
        warnings = []
        key = f"{level.warehouse_id}/{level.product_id}"

        for name in ("total_quantity", "reserved", "in_transit"):
            value = getattr(level, name)
            if not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"{key}: {name} must be an integer, got {value!r}")
            elif value < 0:
                errors.append(f"{key}: {name} is negative ({value})")

        expected_available = level.total_quantity - level.reserved - level.in_transit
        if level.available != expected_available:
            errors.append(
                f"{key}: available={level.available} but total-reserved-in_transit={expected_available}"
            )
        if expected_available < 0:
            errors.append(f"{key}: available would be negative ({expected_available})")

        located = sum(l.quantity for l in level.by_location)
        if any(l.quantity < 0 for l in level.by_location):
            errors.append(f"{key}: negative quantity in location breakdown")
        if located > level.total_quantity:
            warnings.append(f"{key}: locations hold {located} but total is {level.total_quantity}")

        return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)

    def check_no_negative_stock(self, levels: Iterable[InventoryLevel]) -> ValidationResult:
        """Verifies that no row has a negative quantity or negative availability."""
        errors = []
        for level in levels:
            for name in ("total_quantity", "reserved", "in_transit", "available"):
                value = getattr(level, name)
                if value < 0:
                    errors.append(
                        f"Negative stock detected: {level.warehouse_id}/{level.product_id} {name}={value}"
                    )
        return ValidationResult(is_valid=len(errors) == 0, errors=errors)

    def verify_stock_conservation(
        self,
        product_id: str,
        before: Iterable[InventoryLevel],
        after: Iterable[InventoryLevel],
    ) -> ValidationResult:
        """Network-wide total for a product must be equal in both snapshots."""
        total_before = sum(l.total_quantity for l in before if l.product_id == product_id)
        total_after = sum(l.total_quantity for l in after if l.product_id == product_id)

        errors = []
        if total_before != total_after:
            errors.append(
                f"Stock conservation violated: {product_id} "
                f"total before={total_before}, total after={total_after}"
            )
        return ValidationResult(is_valid=len(errors) == 0, errors=errors)

    def register_total_stock(self, product_id: str, total: int) -> None:
        self._total_stock_registry[product_id] = total

    def daily_stock_verification(self, levels: Iterable[InventoryLevel]) -> dict:
        """Compares network totals against the registered expected totals."""
        actual_totals: dict[str, int] = {}
        for level in levels:
            actual_totals[level.product_id] = actual_totals.get(level.product_id, 0) + level.total_quantity

        discrepancies = []
        for product_id, expected_total in self._total_stock_registry.items():
            actual = actual_totals.get(product_id, 0)
            if actual != expected_total:
                discrepancies.append({
                    "product_id": product_id,
                    "expected": expected_total,
                    "actual": actual,
                    "difference": actual - expected_total,
                })

        return {
            "verification_date": datetime.utcnow().isoformat(),
            "total_products_checked": len(self._total_stock_registry),
            "discrepancies_found": len(discrepancies),
            "discrepancies": discrepancies,
            "all_valid": len(discrepancies) == 0,
        }

    def log_stock_change(
        self,
        operation_type: str,
        before: Optional[InventoryLevel],
        after: InventoryLevel,
        triggered_by: str,
        transfer_id: Optional[str] = None,
    ) -> AuditLogEntry:
        """Appends an audit entry for a ledger row write."""
        quantity_before = before.total_quantity if before else 0
        entry = AuditLogEntry(
            entry_id=str(uuid.uuid4()),
            operation_type=operation_type,
            warehouse_id=after.warehouse_id,
            product_id=after.product_id,
            quantity_before=quantity_before,
            quantity_after=after.total_quantity,
            change_amount=after.total_quantity - quantity_before,
            triggered_by=triggered_by,
            transfer_id=transfer_id,
            details={
                "reserved": after.reserved,
                "in_transit": after.in_transit,
                "available": after.available,
                "version": after.version,
            },
        )
        self._audit_log.append(entry)
        if self.audit_repository is not None:
            self.audit_repository.upsert(entry.entry_id, entry)
        return entry

    def get_audit_log(
        self,
        warehouse_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        entries = self._audit_log
        if warehouse_id:
            entries = [e for e in entries if e.warehouse_id == warehouse_id]
        if product_id:
            entries = [e for e in entries if e.product_id == product_id]
        return list(entries)
