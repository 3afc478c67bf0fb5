"""Base class for the services: clock injection and the decision log."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from botocore.exceptions import ClientError

from inventory_network.exceptions import InventoryNetworkError
from inventory_network.models.audit import ServiceDecision
from inventory_network.storage.base import Repository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class BaseService:
    """Shared plumbing for the inventory services."""

    def __init__(
        self,
        service_name: str,
        decision_repository: Optional[Repository[ServiceDecision]] = None,
        clock: Optional[Clock] = None,
    ):
        self.service_name = service_name
        self.decision_repository = decision_repository
        self.clock: Clock = clock or datetime.utcnow
        self._decisions: list[ServiceDecision] = []

        logger.info("Service started: %s", service_name)

    def now(self) -> datetime:
        return self.clock()

    def log_decision(
        self,
        decision_type: str,
        input_data: dict,
        output_data: dict,
        reasoning: str,
    ) -> ServiceDecision:
        """Records a decision in memory and, if configured, in the repository."""
        decision = ServiceDecision(
            decision_id=str(uuid.uuid4()),
            service_name=self.service_name,
            decision_type=decision_type,
            input_data=input_data,
            output_data=output_data,
            reasoning=reasoning,
            timestamp=self.now().isoformat(),
        )
        self._decisions.append(decision)
        logger.debug("[%s] %s: %s", self.service_name, decision_type, reasoning)

        if self.decision_repository is not None:
            try:
                self.decision_repository.upsert(decision.decision_id, decision)
            except (ClientError, InventoryNetworkError) as e:
                logger.warning("Decision log write failed: %s", e)

        return decision

    def get_decisions(self, decision_type: Optional[str] = None) -> list[ServiceDecision]:
        if decision_type is None:
            return list(self._decisions)
        return [d for d in self._decisions if d.decision_type == decision_type]
