"""Per-key mutual exclusion for inventory rows."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from inventory_network.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class ResourceLock:
    """Named locks, created lazily, one per resource key."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._locks: dict[str, threading.RLock] = {}
        self._lock_owners: dict[str, str] = {}
        self._master_lock = threading.Lock()

    def _get_lock(self, resource_key: str) -> threading.RLock:
        with self._master_lock:
            if resource_key not in self._locks:
                self._locks[resource_key] = threading.RLock()
            return self._locks[resource_key]

    def acquire(self, resource_key: str, owner: str, timeout: float | None = None) -> bool:
        """Takes the lock for a resource."""
        acquired = self._get_lock(resource_key).acquire(
            timeout=self.timeout if timeout is None else timeout
        )
        if acquired:
            self._lock_owners[resource_key] = owner
            logger.debug("Lock acquired: %s -> %s", owner, resource_key)
        else:
            logger.warning("Lock not acquired: %s -> %s (timeout)", owner, resource_key)
        return acquired

    def release(self, resource_key: str, owner: str) -> bool:
        """Releases a resource lock."""
        if resource_key not in self._locks:
            return False
        try:
            self._locks[resource_key].release()
        except RuntimeError:
            logger.warning("Lock release by non-owner: %s -> %s", owner, resource_key)
            return False
        self._lock_owners.pop(resource_key, None)
        return True

    @contextmanager
    def hold(self, resource_keys: Iterable[str], owner: str) -> Iterator[None]:
        """Holds every key for the duration of the block.

        Keys are taken in sorted order so two callers locking overlapping sets
        cannot deadlock. On timeout, locks already taken are released.
        """
        keys = sorted(set(resource_keys))
        taken: list[str] = []
        try:
            for key in keys:
                if not self.acquire(key, owner):
                    raise LockTimeoutError(f"Timed out waiting for {key} ({owner})")
                taken.append(key)
            yield
        finally:
            for key in reversed(taken):
                self.release(key, owner)

    def is_locked(self, resource_key: str) -> bool:
        return resource_key in self._lock_owners

    def keys(self) -> list[str]:
        with self._master_lock:
            return list(self._locks)
