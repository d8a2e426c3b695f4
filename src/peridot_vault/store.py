"""Record storage interface.

Components own their records through a RecordStore so a persistent backend
can replace the in-memory one without touching calling code.
"""

from abc import ABC, abstractmethod
from typing import Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class RecordStore(ABC, Generic[K, V]):
    """Abstract key/value store for component records."""

    @abstractmethod
    def get(self, key: K) -> Optional[V]:
        """Return the record for a key, or None."""
        pass

    @abstractmethod
    def set(self, key: K, value: V) -> None:
        """Insert or replace the record for a key."""
        pass

    @abstractmethod
    def delete(self, key: K) -> bool:
        """Delete the record for a key.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    def items(self) -> Iterator[tuple[K, V]]:
        """Iterate over a snapshot of (key, record) pairs."""
        pass

    def values(self) -> Iterator[V]:
        for _, value in self.items():
            yield value

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryStore(RecordStore[K, V]):
    """Process-local store backed by a dict. Not durable across restarts."""

    def __init__(self):
        self._records: dict[K, V] = {}

    def get(self, key: K) -> Optional[V]:
        return self._records.get(key)

    def set(self, key: K, value: V) -> None:
        self._records[key] = value

    def delete(self, key: K) -> bool:
        return self._records.pop(key, None) is not None

    def items(self) -> Iterator[tuple[K, V]]:
        return iter(list(self._records.items()))

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
