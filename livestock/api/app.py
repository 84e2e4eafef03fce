"""HTTP API for current stock prices.

Routes
------
``GET /api/stocks``
    Current prices from the local store.
``GET /api/stocks/external``
    Upstream price API body passed through; ``[]`` when the upstream is down.
    ``X-Upstream-Status`` tells the two cases apart.
``GET /api/stocks/{symbol}`` and ``GET /api/stocks/{symbol}/history``
    Single-symbol lookups against the local store.
``GET /health`` and ``GET /metrics``
    Liveness and Prometheus metrics.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from .. import __version__
from ..common.logging_utils import configure_logging
from ..config import Settings
from ..errors import StorageError
from ..schemas import PriceRecord
from .external import ExternalPriceClient
from .service import QueryService

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "livestock_api_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "http_status"],
)
REQUEST_LATENCY = Histogram(
    "livestock_api_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
)

UPSTREAM_STATUS_HEADER = "X-Upstream-Status"

router = APIRouter(prefix="/api")


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


@router.get("/stocks", response_model=List[PriceRecord])
def list_stocks(service: QueryService = Depends(get_query_service)):
    return service.list_current_prices()


@router.get("/stocks/external")
def external_stocks(service: QueryService = Depends(get_query_service)) -> Response:
    result = service.fetch_external_prices()
    return Response(
        content=result.body,
        media_type="application/json",
        headers={UPSTREAM_STATUS_HEADER: "ok" if result.available else "unavailable"},
    )


@router.get("/stocks/{symbol}", response_model=PriceRecord)
def get_stock(symbol: str, service: QueryService = Depends(get_query_service)):
    record = service.get_price(symbol)
    if record is None:
        raise HTTPException(status_code=404, detail=f"unknown symbol {symbol}")
    return record


@router.get("/stocks/{symbol}/history", response_model=List[PriceRecord])
def stock_history(
    symbol: str,
    limit: int = Query(100, ge=1, le=1000),
    service: QueryService = Depends(get_query_service),
):
    return service.price_history(symbol, limit)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    app.state.query_service.close()
    if app.state.owned_store is not None:
        app.state.owned_store.close()
        logger.info("database pool closed")


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("storage error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "storage unavailable"})


def create_app(
    settings: Optional[Settings] = None,
    *,
    store=None,
    history=None,
    external: Optional[ExternalPriceClient] = None,
) -> FastAPI:
    """Build the API application.

    ``store`` defaults to a :class:`~livestock.storage.pg.PostgresRecordStore`
    built from ``settings``; ``history`` defaults to ``store``.  When the
    external API URL is configured and no ``external`` client is given, one
    is created from ``settings``.  A store built here is closed when the
    application shuts down; a store passed in is left to its owner.
    """

    settings = settings or Settings()
    owned_store = None
    if store is None:
        from ..storage.pg import PostgresRecordStore

        store = owned_store = PostgresRecordStore.from_settings(settings)
    if history is None:
        history = store
    if external is None and settings.external_api_configured:
        external = ExternalPriceClient.from_settings(settings)

    app = FastAPI(title="Livestock Market API", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.owned_store = owned_store
    app.state.query_service = QueryService(store, history=history, external=external)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StorageError, _storage_error_handler)

    @app.middleware("http")
    async def observe_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        if endpoint != "/metrics":
            REQUEST_COUNT.labels(request.method, endpoint, str(response.status_code)).inc()
            REQUEST_LATENCY.labels(request.method, endpoint).observe(
                time.perf_counter() - start
            )
        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router)
    return app


def main() -> None:  # pragma: no cover - service entry point
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level="info")


if __name__ == "__main__":  # pragma: no cover - service entry point
    main()
