"""Read paths over current price data."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from prometheus_client import Counter

from ..errors import UpstreamUnavailableError
from ..schemas import PriceRecord
from ..storage.base import HistoryStore, RecordStore
from .external import ExternalPriceClient

logger = logging.getLogger(__name__)

EMPTY_BODY = b"[]"

external_fetches_total = Counter(
    "livestock_external_fetches_total",
    "Requests to the external price API, by result",
    ["result"],
)


@dataclass(frozen=True)
class ExternalPrices:
    """Body returned by the proxy path and whether the upstream answered."""

    body: bytes
    available: bool


class QueryService:
    """Serve prices from the local store or from the external API.

    The two paths are independent: the local store is the system of record
    kept current by the feed consumer, while the external path passes the
    upstream response through untouched.
    """

    def __init__(
        self,
        store: RecordStore,
        history: Optional[HistoryStore] = None,
        external: Optional[ExternalPriceClient] = None,
    ) -> None:
        self.store = store
        self.history = history
        self.external = external

    def list_current_prices(self) -> List[PriceRecord]:
        return self.store.get_all()

    def get_price(self, symbol: str) -> Optional[PriceRecord]:
        return self.store.get(symbol)

    def price_history(self, symbol: str, limit: int = 100) -> List[PriceRecord]:
        if self.history is None:
            return []
        return self.history.get_history(symbol, limit)

    def fetch_external_prices(self) -> ExternalPrices:
        """Proxy the external price API, degrading to an empty list on failure."""

        if self.external is None:
            logger.warning("external price API is not configured")
            external_fetches_total.labels("unconfigured").inc()
            return ExternalPrices(EMPTY_BODY, available=False)
        try:
            body = self.external.fetch_prices()
        except UpstreamUnavailableError as exc:
            logger.warning("external price API unavailable: %s", exc)
            external_fetches_total.labels("unavailable").inc()
            return ExternalPrices(EMPTY_BODY, available=False)
        external_fetches_total.labels("ok").inc()
        return ExternalPrices(body, available=True)

    def close(self) -> None:
        if self.external is not None:
            self.external.close()


__all__ = ["QueryService", "ExternalPrices", "EMPTY_BODY"]
