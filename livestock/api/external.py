"""Client for the third-party price API."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class ExternalPriceClient:
    """Read current prices from a PostgREST-style upstream.

    The API key is sent both as the ``apikey`` header and as a bearer token.
    Any transport failure, timeout or non-2xx response raises
    :class:`~livestock.errors.UpstreamUnavailableError`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        prices_path: str = "/rest/v1/stock_market",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.prices_path = prices_path
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ExternalPriceClient":
        return cls(
            settings.external_api_url,
            settings.external_api_key,
            prices_path=settings.external_prices_path,
            timeout=settings.external_api_timeout_seconds,
            **kwargs,
        )

    def fetch_prices(self) -> bytes:
        """Return the upstream response body unmodified."""

        try:
            resp = self._client.get(self.prices_path)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"price API request failed: {exc}") from exc
        return resp.content

    def close(self) -> None:
        self._client.close()


__all__ = ["ExternalPriceClient"]
