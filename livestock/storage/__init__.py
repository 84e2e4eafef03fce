"""Storage backends for price records."""

from .base import HistoryStore, InMemoryRecordStore, RecordStore

__all__ = ["RecordStore", "HistoryStore", "InMemoryRecordStore"]
