"""Per-symbol throttle for history samples."""

from __future__ import annotations

import threading
import time
from decimal import Decimal
from typing import Callable, Dict, Tuple


class HistoryThrottle:
    """Decide whether a quote is worth appending to the price history.

    A sample is accepted when the symbol has no previous sample, when the
    price moved by at least ``min_price_delta`` since the last accepted
    sample, or when ``min_interval`` seconds have elapsed.  Only samples
    passed to :meth:`mark_recorded` count as previous samples.
    """

    def __init__(
        self,
        min_price_delta: float = 0.1,
        min_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_price_delta = Decimal(str(min_price_delta))
        self.min_interval = min_interval
        self._clock = clock
        self._last: Dict[str, Tuple[Decimal, float]] = {}
        self._lock = threading.Lock()

    def should_record(self, symbol: str, price: Decimal) -> bool:
        with self._lock:
            last = self._last.get(symbol)
        if last is None:
            return True
        last_price, last_at = last
        if abs(price - last_price) >= self.min_price_delta:
            return True
        return self._clock() - last_at >= self.min_interval

    def mark_recorded(self, symbol: str, price: Decimal) -> None:
        with self._lock:
            self._last[symbol] = (price, self._clock())


__all__ = ["HistoryThrottle"]
