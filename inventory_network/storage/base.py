"""Repository contract consumed by every service.

Keys are plain strings. ``upsert`` accepts an ``expected_version`` for
optimistic concurrency: ``0`` means the key must not exist yet, any other
value must match the stored record's ``version`` attribute. ``None`` writes
unconditionally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Repository(ABC, Generic[T]):

    @abstractmethod
    def get(self, key: str) -> Optional[T]:
        ...

    @abstractmethod
    def list(self) -> list[T]:
        ...

    @abstractmethod
    def upsert(self, key: str, record: T, expected_version: Optional[int] = None) -> T:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    def find(self, **attrs: Any) -> list[T]:
        """Records whose attributes equal every given value."""
        return [
            record for record in self.list()
            if all(getattr(record, name) == value for name, value in attrs.items())
        ]
