"""Central settings: loads .env, then builds Settings from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from inventory_network.models.allocation import AllocationAlgorithm, AllocationWeights

# .env at the project root; variables already set in the process win
_env_path = Path(__file__).resolve().parent.parent / ".env"

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    region_name: str = "us-west-2"
    storage_backend: str = "memory"
    table_prefix: str = ""
    lock_timeout: float = 10.0
    log_level: str = "INFO"
    default_algorithm: AllocationAlgorithm = AllocationAlgorithm.HYBRID
    hybrid_weights: AllocationWeights = field(default_factory=AllocationWeights)
    excess_ratio: float = 1.5
    deficit_ratio: float = 0.5
    default_transfer_cost: float = 100.0

    def table_name(self, name: str) -> str:
        return f"{self.table_prefix}{name}"


def _parse_weights(raw: Optional[str]) -> AllocationWeights:
    if not raw:
        return AllocationWeights()
    parts = [float(p) for p in raw.split(",")]
    if len(parts) != 3:
        raise ValueError(f"INVENTORY_HYBRID_WEIGHTS needs 3 values: {raw!r}")
    return AllocationWeights(distance=parts[0], inventory=parts[1], cost=parts[2])


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Read settings from the environment (loading the .env file first)."""
    load_dotenv(env_file or _env_path, override=False)
    env = os.environ

    backend = env.get("INVENTORY_STORAGE_BACKEND", "memory").lower()
    if backend not in ("memory", "dynamodb"):
        raise ValueError(f"Unknown storage backend: {backend}")

    return Settings(
        region_name=env.get("AWS_DEFAULT_REGION", "us-west-2"),
        storage_backend=backend,
        table_prefix=env.get("INVENTORY_TABLE_PREFIX", ""),
        lock_timeout=float(env.get("INVENTORY_LOCK_TIMEOUT", "10")),
        log_level=env.get("INVENTORY_LOG_LEVEL", "INFO").upper(),
        default_algorithm=AllocationAlgorithm(
            env.get("INVENTORY_DEFAULT_ALGORITHM", AllocationAlgorithm.HYBRID.value)
        ),
        hybrid_weights=_parse_weights(env.get("INVENTORY_HYBRID_WEIGHTS")),
        excess_ratio=float(env.get("INVENTORY_EXCESS_RATIO", "1.5")),
        deficit_ratio=float(env.get("INVENTORY_DEFICIT_RATIO", "0.5")),
        default_transfer_cost=float(env.get("INVENTORY_DEFAULT_TRANSFER_COST", "100")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
