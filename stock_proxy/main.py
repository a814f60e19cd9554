"""
Stock Aggregation Proxy API

FastAPI application exposing average price and pairwise correlation over the
upstream pricing service.
"""
import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .exceptions import AuthError, UpstreamError, ValidationError
from .logging_config import setup_logging, get_logger
from .schemas import (
    AveragePriceResponse, CacheClearResponse, CorrelationResponse, HealthResponse,
    StocksResponse
)
from .services import StockService, run_cache_sweeper

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    service = StockService.from_settings()
    app.state.stock_service = service
    logger.info(f"API Base URL: {settings.stock_api_base_url}")

    # Startup probe is informational; the API still starts if upstream is down
    health = await service.health_check()
    if health.success:
        logger.info(f"Connected to stock API - found {health.stock_count} stocks")
    else:
        logger.error(f"Failed to connect to stock API: {health.message}")

    sweeper = asyncio.create_task(
        run_cache_sweeper(service.cache, settings.cache_sweep_interval_seconds)
    )

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await service.aclose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Cached proxy computing average prices and correlations from the pricing service",
    version=settings.app_version,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_stock_service(request: Request) -> StockService:
    """The service instance owned by this application."""
    return request.app.state.stock_service


# ============ Error Mapping ============

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.error(f"Authentication error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(f"Upstream error on {request.url.path}: {exc} body={exc.body!r}")
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "upstream_status": exc.status_code},
    )


# ============ Stock Endpoints ============

@app.get("/stocks", response_model=StocksResponse)
async def get_all_stocks(service: StockService = Depends(get_stock_service)):
    """Get all available stocks as a name -> ticker mapping."""
    return await service.get_all_stocks()


@app.get("/stocks/{ticker}", response_model=AveragePriceResponse)
async def get_average_stock_price(
    ticker: str,
    minutes: Optional[str] = None,
    aggregation: Optional[str] = None,
    service: StockService = Depends(get_stock_service)
):
    """
    Average price of a stock over the last `minutes` minutes (default 60).

    Only `aggregation=average` is supported.
    """
    return await service.get_average_price(ticker, minutes, aggregation)


@app.get("/stockcorrelation", response_model=CorrelationResponse)
async def get_stock_correlation(
    request: Request,
    minutes: Optional[str] = None,
    ticker: List[str] = Query(default=[]),
    service: StockService = Depends(get_stock_service)
):
    """
    Correlation between exactly two stocks over the last `minutes` minutes.

    Pass the tickers as `?ticker=NVDA&ticker=PYPL` (or `ticker[]=`).
    """
    tickers = ticker + request.query_params.getlist("ticker[]")
    return await service.get_correlation(tickers, minutes)


# ============ Cache Management ============

@app.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(service: StockService = Depends(get_stock_service)):
    """Flush every cached response."""
    removed = service.clear_cache()
    return CacheClearResponse(message="Cleared all cached responses", entries_removed=removed)


@app.delete("/stocks/{ticker}/cache", response_model=CacheClearResponse)
async def clear_stock_cache(ticker: str, service: StockService = Depends(get_stock_service)):
    """Drop cached price histories for one ticker (forces a refetch)."""
    removed = service.clear_cache(ticker)
    return CacheClearResponse(
        message=f"Cleared cached price history for {ticker.strip().upper()}",
        entries_removed=removed,
    )


# ============ Health Check ============

@app.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    service: StockService = Depends(get_stock_service)
):
    """Live upstream connectivity check."""
    health = await service.health_check()
    if not health.success:
        response.status_code = 503
    return health
