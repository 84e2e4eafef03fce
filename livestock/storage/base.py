"""Record store interfaces and the in-process implementation."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from ..schemas import PriceRecord


class RecordStore(ABC):
    """Keyed storage holding the latest :class:`PriceRecord` per symbol.

    ``upsert`` replaces the whole record for its symbol; implementations must
    make that replacement atomic so readers never see a mix of old and new
    fields.  Failures surface as :class:`~livestock.errors.StorageError`.
    """

    @abstractmethod
    def upsert(self, record: PriceRecord) -> None:
        """Insert ``record`` or overwrite the existing record for its symbol."""

    @abstractmethod
    def get_all(self) -> List[PriceRecord]:
        """Return every current record, in no particular order."""

    @abstractmethod
    def get(self, symbol: str) -> Optional[PriceRecord]:
        """Return the record for ``symbol`` or ``None``."""


class HistoryStore(ABC):
    """Append-only price history."""

    @abstractmethod
    def append_history(self, record: PriceRecord) -> None:
        """Append one history sample for ``record.symbol``."""

    @abstractmethod
    def get_history(self, symbol: str, limit: int = 100) -> List[PriceRecord]:
        """Return up to ``limit`` samples for ``symbol``, newest first."""


class InMemoryRecordStore(RecordStore, HistoryStore):
    """Thread-safe store backed by dictionaries.

    Records are immutable, so swapping the dict entry under the lock is the
    whole write; readers copy the values under the same lock.
    """

    def __init__(self, history_limit: int = 10_000) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, PriceRecord] = {}
        self._history: Dict[str, Deque[PriceRecord]] = defaultdict(
            lambda: deque(maxlen=history_limit)
        )

    def upsert(self, record: PriceRecord) -> None:
        with self._lock:
            self._records[record.symbol] = record

    def get_all(self) -> List[PriceRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, symbol: str) -> Optional[PriceRecord]:
        with self._lock:
            return self._records.get(symbol)

    def append_history(self, record: PriceRecord) -> None:
        with self._lock:
            self._history[record.symbol].append(record)

    def get_history(self, symbol: str, limit: int = 100) -> List[PriceRecord]:
        with self._lock:
            samples = list(self._history.get(symbol, ()))
        samples.reverse()
        return samples[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["RecordStore", "HistoryStore", "InMemoryRecordStore"]
