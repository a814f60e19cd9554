"""
Stock service: the orchestration layer behind the HTTP endpoints.

Validates input, consults the response cache, fetches from the pricing
service on a miss and feeds the data to PriceCalculations. One instance owns
the credential cache and the response cache for the life of the process.
"""
import asyncio
from typing import Any, Optional, Sequence, Tuple

import httpx

from ..config import settings
from ..exceptions import StockProxyError, ValidationError
from ..logging_config import get_logger
from ..schemas import (
    AveragePriceResponse, CorrelationResponse, HealthResponse, PricePoint,
    StocksResponse, TickerStats
)
from .cache import ResponseCache
from .calculations import PriceCalculations
from .credentials import CredentialCache, CredentialIssuer
from .upstream import UpstreamClient, build_http_client

logger = get_logger(__name__)

PriceHistory = Tuple[PricePoint, ...]

STOCK_LIST_CACHE_KEY = "all_stocks"
SUPPORTED_AGGREGATIONS = ("average",)


def history_cache_key(ticker: str, minutes: Optional[int]) -> str:
    """Cache key for a ticker's history. Keys of one ticker share the ``{ticker}_history_`` prefix."""
    return f"{ticker}_history_{minutes if minutes is not None else 'latest'}"


def history_cache_prefix(ticker: str) -> str:
    return f"{ticker}_history_"


class StockService:
    """
    Service for price aggregation requests.

    Every public method validates all of its input before touching the cache
    or the network, so a ValidationError never has side effects.
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        cache: ResponseCache,
        credentials: CredentialCache,
    ):
        """
        Initialize the stock service.

        Args:
            upstream: Client for the pricing service.
            cache: Response cache owned by this service.
            credentials: Credential cache shared with ``upstream``.
        """
        self._upstream = upstream
        self._cache = cache
        self._credentials = credentials
        self._calc = PriceCalculations()

    @classmethod
    def from_settings(
        cls,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "StockService":
        """Wire up the service and its collaborators from application settings."""
        client = build_http_client(transport=transport)
        credentials = CredentialCache(CredentialIssuer.from_settings(client))
        return cls(
            upstream=UpstreamClient(client, credentials),
            cache=ResponseCache(),
            credentials=credentials,
        )

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    # ============ Stock List ============

    async def get_all_stocks(self) -> StocksResponse:
        """Get all listed stocks, cached for the stock-list TTL."""
        stocks = self._cache.get(STOCK_LIST_CACHE_KEY)
        if stocks is None:
            logger.info("Fetching all stocks from API")
            stocks = await self._upstream.fetch_all_stocks()
            self._cache.set(STOCK_LIST_CACHE_KEY, stocks, settings.cache_ttl_stock_list_seconds)
            logger.info(
                f"Cached stock list with {len(stocks)} stocks for "
                f"{settings.cache_ttl_stock_list_seconds}s"
            )
        return StocksResponse(stocks=dict(stocks))

    # ============ Price History ============

    async def get_price_history(self, ticker: str, minutes: Optional[int]) -> PriceHistory:
        """
        Get a ticker's price history, from cache when fresh.

        Args:
            ticker: Already validated ticker.
            minutes: Window in minutes, or None for the current quote.

        Returns:
            Immutable sequence of price points.
        """
        key = history_cache_key(ticker, minutes)
        history = self._cache.get(key)
        if history is not None:
            return history

        logger.info(
            f"Fetching price history for {ticker}"
            f"{f' for the last {minutes} minutes' if minutes else ''}"
        )
        history = tuple(await self._upstream.fetch_price_history(ticker, minutes))
        # Only written after the fetch fully succeeded
        self._cache.set(key, history, settings.cache_ttl_price_history_seconds)
        return history

    async def get_average_price(
        self,
        ticker: Any,
        minutes: Any = None,
        aggregation: Optional[str] = None
    ) -> AveragePriceResponse:
        """
        Average price of a ticker over the last ``minutes`` minutes.

        Args:
            ticker: Ticker symbol.
            minutes: Window in minutes. Defaults to the configured window.
            aggregation: Aggregation mode; only ``average`` is supported.

        Returns:
            The average together with the history it was computed from.
        """
        ticker = self._calc.validate_ticker(ticker)
        window = self._resolve_window(minutes)
        if aggregation is not None and aggregation not in SUPPORTED_AGGREGATIONS:
            raise ValidationError('Only "average" aggregation is currently supported')

        history = await self.get_price_history(ticker, window)
        return AveragePriceResponse(
            average_stock_price=self._calc.average(self._calc.extract_prices(history)),
            price_history=list(history),
        )

    # ============ Correlation ============

    async def get_correlation(
        self,
        tickers: Sequence[Any],
        minutes: Any = None
    ) -> CorrelationResponse:
        """
        Pearson correlation between two tickers over the last ``minutes`` minutes.

        Both histories are fetched concurrently. If either fetch fails the
        request fails with that error and the other fetch is cancelled.

        Args:
            tickers: Exactly two ticker symbols.
            minutes: Window in minutes. Defaults to the configured window.

        Returns:
            The rounded correlation (None when there is too little aligned
            data) and each ticker's average and history.
        """
        if not isinstance(tickers, (list, tuple)) or len(tickers) != 2:
            raise ValidationError(
                "Exactly two stock tickers must be provided using ticker query parameters"
            )
        ticker_a, ticker_b = (self._calc.validate_ticker(t) for t in tickers)
        window = self._resolve_window(minutes)

        history_a, history_b = await self._fetch_pair(ticker_a, ticker_b, window)

        aligned = self._calc.align_series(history_a, history_b)
        result = self._calc.correlation(aligned.prices_a, aligned.prices_b)
        if result.coefficient is None:
            logger.info(
                f"Insufficient data to correlate {ticker_a} and {ticker_b} "
                f"({result.sample_size} aligned points)"
            )

        return CorrelationResponse(
            correlation=result.rounded,
            sample_size=result.sample_size,
            stocks={
                ticker_a: self._ticker_stats(history_a),
                ticker_b: self._ticker_stats(history_b),
            },
        )

    async def _fetch_pair(
        self,
        ticker_a: str,
        ticker_b: str,
        minutes: int
    ) -> Tuple[PriceHistory, PriceHistory]:
        tasks = [
            asyncio.create_task(self.get_price_history(ticker, minutes))
            for ticker in (ticker_a, ticker_b)
        ]
        try:
            history_a, history_b = await asyncio.gather(*tasks)
        except BaseException:
            # First failure or caller cancellation: abandon whichever fetch is still running
            for task in tasks:
                task.cancel()
            raise
        return history_a, history_b

    def _ticker_stats(self, history: PriceHistory) -> TickerStats:
        return TickerStats(
            average_price=self._calc.average(self._calc.extract_prices(history)),
            price_history=list(history),
        )

    # ============ Health & Cache Management ============

    async def health_check(self) -> HealthResponse:
        """Live probe of the pricing service. Never served from cache."""
        try:
            stock_count = await self._upstream.probe()
        except StockProxyError as e:
            logger.error(f"Connection test failed: {e}")
            return HealthResponse(
                success=False,
                message=f"Failed to connect to stock API: {e}",
                error=str(e),
            )
        return HealthResponse(
            success=True,
            stock_count=stock_count,
            message="Connection to stock API successful",
        )

    def clear_cache(self, ticker: Any = None) -> int:
        """
        Invalidate cached responses.

        Args:
            ticker: Drop only this ticker's histories. None flushes everything.

        Returns:
            Number of entries removed.
        """
        if ticker is None:
            return self._cache.invalidate()
        ticker = self._calc.validate_ticker(ticker)
        return self._cache.invalidate(history_cache_prefix(ticker))

    async def aclose(self) -> None:
        await self._upstream.aclose()

    def _resolve_window(self, minutes: Any) -> int:
        if minutes is None:
            return settings.default_window_minutes
        return self._calc.parse_window(minutes)
