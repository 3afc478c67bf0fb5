"""Process-local repository backed by a dict."""

from __future__ import annotations

import copy
import threading
from typing import Optional

from inventory_network.exceptions import ConcurrentModificationError
from inventory_network.storage.base import Repository, T


class InMemoryRepository(Repository[T]):
    """Dict store; records are deep-copied in and out so callers never share state."""

    def __init__(self) -> None:
        self._records: dict[str, T] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def list(self) -> list[T]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def upsert(self, key: str, record: T, expected_version: Optional[int] = None) -> T:
        with self._lock:
            if expected_version is not None:
                current = self._records.get(key)
                if current is None:
                    ok = expected_version == 0
                else:
                    ok = getattr(current, "version", None) == expected_version
                if not ok:
                    raise ConcurrentModificationError(
                        f"Version conflict on {key}: expected {expected_version}"
                    )
            self._records[key] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._records)
