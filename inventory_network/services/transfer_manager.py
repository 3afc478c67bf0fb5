"""Transfer Manager - moves stock between warehouses.

- Creating a transfer moves the units from ``available`` to ``in_transit``
  on the source; ``total_quantity`` is untouched until receipt
- Receipt moves the units from the source totals to the destination
- Cancellation returns the units to the source's ``available``
- pending -> in-transit -> received, pending | in-transit -> cancelled
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from inventory_network.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    InventoryNetworkError,
    TransferNotFoundError,
    ValidationError,
)
from inventory_network.models.transfer import (
    TRANSITIONS,
    InventoryTransfer,
    PlanSubmission,
    RebalancingPlan,
    TransferItem,
    TransferReason,
    TransferStatus,
)
from inventory_network.services.base_service import BaseService
from inventory_network.services.geo import (
    estimate_delivery_days,
    estimate_shipping_cost,
    haversine_km,
)
from inventory_network.services.inventory_ledger import InventoryLedger, StockChange
from inventory_network.services.warehouse_registry import WarehouseRegistry
from inventory_network.storage.base import Repository

logger = logging.getLogger(__name__)


def _transfer_key(transfer_id: str) -> str:
    return f"transfer:{transfer_id}"


def _negate(changes: list[StockChange]) -> list[StockChange]:
    return [
        StockChange(c.product_id, c.warehouse_id, -c.total_delta, -c.reserved_delta, -c.in_transit_delta)
        for c in changes
    ]


class TransferManager(BaseService):
    """Inter-warehouse transfers and their inventory effects."""

    def __init__(
        self,
        ledger: InventoryLedger,
        repository: Repository[InventoryTransfer],
        registry: Optional[WarehouseRegistry] = None,
        **kwargs: Any,
    ):
        super().__init__(service_name="TransferManager", **kwargs)
        self.ledger = ledger
        self.repository = repository
        self.registry = registry or ledger.registry

    # --- Creation ---

    def create_transfer(
        self,
        from_warehouse: str,
        to_warehouse: str,
        items: list[TransferItem],
        reason: TransferReason = TransferReason.MANUAL,
        cost: Optional[float] = None,
        notes: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
    ) -> InventoryTransfer:
        draft = InventoryTransfer(
            from_warehouse=from_warehouse,
            to_warehouse=to_warehouse,
            items=items,
            reason=TransferReason(reason),
            cost=cost,
            notes=notes,
            estimated_delivery=estimated_delivery,
        )
        return self.submit(draft)

    def submit(self, draft: InventoryTransfer) -> InventoryTransfer:
        """Validates a draft, books its units in transit and persists it as pending.

        The transfer lock makes the duplicate check and the booking one step;
        the record itself is only written if its id does not exist yet.
        """
        with self.ledger.locked([_transfer_key(draft.id)]):
            self._validate(draft)
            transfer = copy.deepcopy(draft)
            transfer.status = TransferStatus.PENDING
            transfer.initiated_at = self.now()
            transfer.shipment_date = None
            transfer.actual_delivery = None
            self._fill_estimates(transfer)

            changes = [
                StockChange(item.product_id, transfer.from_warehouse, in_transit_delta=item.quantity)
                for item in transfer.items
            ]
            self.ledger.apply_changes(
                changes, operation="transfer_out", triggered_by=self.service_name, transfer_id=transfer.id
            )
            try:
                self.repository.upsert(transfer.id, transfer, expected_version=0)
            except Exception as e:
                logger.error("Transfer %s not saved, releasing in-transit stock: %s", transfer.id, e)
                self.ledger.apply_changes(
                    _negate(changes), operation="transfer_rollback",
                    triggered_by=self.service_name, transfer_id=transfer.id,
                )
                if isinstance(e, ConcurrentModificationError):
                    raise ValidationError(f"Transfer {transfer.id} was already submitted") from e
                raise

        self.log_decision(
            decision_type="transfer_created",
            input_data={
                "from_warehouse": transfer.from_warehouse,
                "to_warehouse": transfer.to_warehouse,
                "items": {i.product_id: i.quantity for i in transfer.items},
                "reason": transfer.reason.value,
            },
            output_data={"transfer_id": transfer.id, "status": transfer.status.value, "cost": transfer.cost},
            reasoning=(
                f"{transfer.total_units} units booked in transit: "
                f"{transfer.from_warehouse} -> {transfer.to_warehouse}"
            ),
        )
        logger.info("Transfer created: %s (%s -> %s)", transfer.id, transfer.from_warehouse, transfer.to_warehouse)
        return transfer

    def _validate(self, draft: InventoryTransfer) -> None:
        self.registry.require(draft.from_warehouse)
        self.registry.require(draft.to_warehouse)
        if self.repository.get(draft.id) is not None:
            raise ValidationError(f"Transfer {draft.id} was already submitted")
        if draft.from_warehouse == draft.to_warehouse:
            raise ValidationError("Source and destination warehouse must differ")
        if not draft.items:
            raise ValidationError("Transfer has no items")
        for item in draft.items:
            if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity <= 0:
                raise ValidationError(
                    f"Transfer quantity for {item.product_id} must be a positive integer: {item.quantity!r}"
                )

    def _fill_estimates(self, transfer: InventoryTransfer) -> None:
        source = self.registry.require(transfer.from_warehouse).coordinates
        target = self.registry.require(transfer.to_warehouse).coordinates
        if source is None or target is None:
            return
        distance = haversine_km(source, target)
        if transfer.cost is None:
            transfer.cost = round(estimate_shipping_cost(distance, transfer.total_units), 2)
        if transfer.estimated_delivery is None:
            transfer.estimated_delivery = transfer.initiated_at + timedelta(days=estimate_delivery_days(distance))

    # --- State machine ---

    def update_transfer_status(
        self, transfer_id: str, status: Union[TransferStatus, str]
    ) -> InventoryTransfer:
        status = TransferStatus(status)
        with self.ledger.locked([_transfer_key(transfer_id)]):
            transfer = self.require_transfer(transfer_id)
            current = transfer.status
            if status not in TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Transfer {transfer_id}: {current.value} -> {status.value} is not allowed"
                )
            if current == status:
                return transfer

            changes = self._transition_changes(transfer, status)
            if changes:
                self.ledger.apply_changes(
                    changes,
                    operation=f"transfer_{status.value.replace('-', '_')}",
                    triggered_by=self.service_name,
                    transfer_id=transfer.id,
                )

            updated = copy.deepcopy(transfer)
            updated.status = status
            if status == TransferStatus.IN_TRANSIT and updated.shipment_date is None:
                updated.shipment_date = self.now()
            elif status == TransferStatus.RECEIVED:
                updated.actual_delivery = self.now()

            try:
                self.repository.upsert(updated.id, updated)
            except Exception as e:
                logger.error("Transfer %s status not saved, reverting stock: %s", transfer_id, e)
                if changes:
                    self.ledger.apply_changes(
                        _negate(changes), operation="transfer_rollback",
                        triggered_by=self.service_name, transfer_id=transfer.id,
                    )
                raise

        self.log_decision(
            decision_type="transfer_status_change",
            input_data={"transfer_id": transfer_id, "from": current.value, "to": status.value},
            output_data={"status": updated.status.value},
            reasoning=f"Transfer {transfer_id}: {current.value} -> {status.value}",
        )
        logger.info("Transfer %s: %s -> %s", transfer_id, current.value, status.value)
        return updated

    @staticmethod
    def _transition_changes(transfer: InventoryTransfer, status: TransferStatus) -> list[StockChange]:
        if status == TransferStatus.RECEIVED:
            changes = []
            for item in transfer.items:
                changes.append(StockChange(
                    item.product_id, transfer.from_warehouse,
                    total_delta=-item.quantity, in_transit_delta=-item.quantity,
                ))
                changes.append(StockChange(item.product_id, transfer.to_warehouse, total_delta=item.quantity))
            return changes
        if status == TransferStatus.CANCELLED:
            return [
                StockChange(item.product_id, transfer.from_warehouse, in_transit_delta=-item.quantity)
                for item in transfer.items
            ]
        return []

    # --- Queries ---

    def get_transfer(self, transfer_id: str) -> Optional[InventoryTransfer]:
        return self.repository.get(transfer_id)

    def require_transfer(self, transfer_id: str) -> InventoryTransfer:
        transfer = self.repository.get(transfer_id)
        if transfer is None:
            raise TransferNotFoundError(f"Transfer not found: {transfer_id}")
        return transfer

    def list_transfers(self, status: Optional[TransferStatus] = None) -> list[InventoryTransfer]:
        transfers = self.repository.list()
        if status is not None:
            transfers = [t for t in transfers if t.status == TransferStatus(status)]
        return sorted(transfers, key=lambda t: (t.initiated_at is None, t.initiated_at))

    def get_transfers_by_warehouse(self, warehouse_id: str) -> list[InventoryTransfer]:
        return [
            t for t in self.list_transfers()
            if t.from_warehouse == warehouse_id or t.to_warehouse == warehouse_id
        ]

    def get_pending_transfers(self) -> list[InventoryTransfer]:
        return [t for t in self.list_transfers() if t.is_open]

    # --- Plans ---

    def submit_plan(self, plan: RebalancingPlan) -> PlanSubmission:
        """Submits each draft of a plan on its own; one failure does not stop the rest."""
        submission = PlanSubmission(plan_id=plan.id)
        for draft in plan.transfers:
            try:
                submission.created.append(self.submit(draft))
            except InventoryNetworkError as e:
                logger.warning("Plan %s: draft %s rejected: %s", plan.id, draft.id, e)
                submission.failed.append({
                    "transfer_id": draft.id,
                    "from_warehouse": draft.from_warehouse,
                    "to_warehouse": draft.to_warehouse,
                    "error": str(e),
                })

        self.log_decision(
            decision_type="plan_submitted",
            input_data={"plan_id": plan.id, "drafts": len(plan.transfers)},
            output_data={
                "created": [t.id for t in submission.created],
                "failed": len(submission.failed),
            },
            reasoning=f"{len(submission.created)} of {len(plan.transfers)} drafts submitted.",
        )
        return submission
