"""Price feed ingestion."""

from .history import HistoryThrottle

__all__ = ["HistoryThrottle"]
