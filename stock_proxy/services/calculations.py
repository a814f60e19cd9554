"""
Price statistics and input validation.

Provides the average, time alignment and Pearson correlation used by the
stock service. Everything here is pure: no I/O, no caching.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import ValidationError
from ..logging_config import get_logger
from ..schemas import PricePoint

logger = get_logger(__name__)

# Symbols such as NVDA, BRK.B, ^GSPC or EURUSD=X; anything that could break the upstream URL is refused
_TICKER_PATTERN = re.compile(r"^[A-Z0-9.\-_^=]{1,20}$")
_WINDOW_PATTERN = re.compile(r"^\s*\+?\d+\s*$")

CORRELATION_DECIMALS = 4


@dataclass(frozen=True)
class AlignedSeries:
    """
    Prices of two histories restricted to their common time window.

    The sequences are paired by position, not by exact timestamp, and may
    differ in length when the two tickers were sampled at different rates.
    """
    prices_a: List[float] = field(default_factory=list)
    prices_b: List[float] = field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not self.prices_a or not self.prices_b


@dataclass(frozen=True)
class CorrelationResult:
    coefficient: Optional[float]  # None when there is not enough data
    sample_size: int

    @property
    def rounded(self) -> Optional[float]:
        return PriceCalculations.format_correlation(self.coefficient)


class PriceCalculations:
    """Static methods for price-series calculations."""

    @staticmethod
    def average(prices: Sequence[float]) -> float:
        """
        Arithmetic mean of a price sequence.

        An empty sequence yields 0 rather than an error, so an empty history
        and a zero average look the same to callers.
        """
        if not prices:
            return 0.0
        return sum(prices) / len(prices)

    @staticmethod
    def extract_prices(history: Sequence[PricePoint]) -> List[float]:
        return [point.price for point in history]

    @staticmethod
    def validate_ticker(ticker: Any) -> str:
        """
        Validate a ticker symbol.

        Args:
            ticker: Raw ticker from the request.

        Returns:
            The stripped, upper-cased ticker.

        Raises:
            ValidationError: If the ticker is missing, not a string or blank.
        """
        if ticker is None or not isinstance(ticker, str) or not ticker.strip():
            raise ValidationError("Invalid ticker parameter")
        normalized = ticker.strip().upper()
        if not _TICKER_PATTERN.match(normalized):
            raise ValidationError(f"Invalid ticker parameter: {ticker!r}")
        return normalized

    @staticmethod
    def parse_window(raw: Any) -> int:
        """
        Parse a window length in minutes.

        Args:
            raw: Integer or decimal string.

        Returns:
            The window as a positive integer.

        Raises:
            ValidationError: If not a positive integer. Zero and negative
                values are rejected, not clamped.
        """
        if isinstance(raw, bool):
            raise ValidationError("Minutes parameter must be a positive number")
        if isinstance(raw, int):
            minutes = raw
        elif isinstance(raw, str) and _WINDOW_PATTERN.match(raw):
            minutes = int(raw)
        else:
            raise ValidationError("Minutes parameter must be a positive number")

        if minutes <= 0:
            raise ValidationError("Minutes parameter must be a positive number")
        return minutes

    @staticmethod
    def align_series(
        history_a: Sequence[PricePoint],
        history_b: Sequence[PricePoint]
    ) -> AlignedSeries:
        """
        Time-align two price histories for correlation.

        Both histories are sorted by timestamp, then cut to the window where
        they overlap, ``[max(start_a, start_b), min(end_a, end_b)]``
        inclusive. Prices come back in timestamp order.

        Args:
            history_a: Price history of the first ticker, any order.
            history_b: Price history of the second ticker, any order.

        Returns:
            AlignedSeries, empty on both sides when the windows do not overlap.
        """
        frame_a = _to_frame(history_a)
        frame_b = _to_frame(history_b)
        if frame_a.empty or frame_b.empty:
            return AlignedSeries()

        start = max(frame_a["timestamp"].iloc[0], frame_b["timestamp"].iloc[0])
        end = min(frame_a["timestamp"].iloc[-1], frame_b["timestamp"].iloc[-1])
        if start > end:
            logger.debug(f"No overlap between histories ({start} > {end})")
            return AlignedSeries()

        in_window_a = frame_a[frame_a["timestamp"].between(start, end)]
        in_window_b = frame_b[frame_b["timestamp"].between(start, end)]

        return AlignedSeries(
            prices_a=in_window_a["price"].tolist(),
            prices_b=in_window_b["price"].tolist(),
            start=start.to_pydatetime(),
            end=end.to_pydatetime(),
        )

    @staticmethod
    def correlation(x: Sequence[float], y: Sequence[float]) -> CorrelationResult:
        """
        Pearson correlation coefficient with Bessel's correction.

        Uses the first ``n = min(len(x), len(y))`` values of each sequence.

        Args:
            x: First price sequence.
            y: Second price sequence.

        Returns:
            CorrelationResult whose coefficient is None when either sequence
            has fewer than 2 points or is constant. Never NaN.
        """
        if x is None or y is None:
            return CorrelationResult(coefficient=None, sample_size=0)

        n = min(len(x), len(y))
        if n < 2:
            return CorrelationResult(coefficient=None, sample_size=n)

        xs = np.asarray(list(x)[:n], dtype=float)
        ys = np.asarray(list(y)[:n], dtype=float)

        # Constant series: the standard deviation is exactly zero
        if np.all(xs == xs[0]) or np.all(ys == ys[0]):
            return CorrelationResult(coefficient=None, sample_size=n)

        x_dev = xs - xs.mean()
        y_dev = ys - ys.mean()
        covariance = float(np.dot(x_dev, y_dev)) / (n - 1)
        x_std = math.sqrt(float(np.dot(x_dev, x_dev)) / (n - 1))
        y_std = math.sqrt(float(np.dot(y_dev, y_dev)) / (n - 1))

        if x_std == 0 or y_std == 0:
            return CorrelationResult(coefficient=None, sample_size=n)

        coefficient = covariance / (x_std * y_std)
        if not math.isfinite(coefficient):
            logger.warning(f"Non-finite correlation over {n} points discarded")
            return CorrelationResult(coefficient=None, sample_size=n)

        # Floating error can push a perfect correlation just past +/-1
        coefficient = max(-1.0, min(1.0, coefficient))
        return CorrelationResult(coefficient=coefficient, sample_size=n)

    @staticmethod
    def format_correlation(coefficient: Optional[float]) -> Optional[float]:
        """Round a coefficient for presentation. None stays None."""
        if coefficient is None:
            return None
        return round(coefficient, CORRELATION_DECIMALS)


def _to_frame(history: Sequence[PricePoint]) -> pd.DataFrame:
    """Price history as a timestamp-sorted frame with columns ``timestamp`` and ``price``."""
    frame = pd.DataFrame(
        [(point.timestamp, point.price) for point in history],
        columns=["timestamp", "price"],
    )
    if frame.empty:
        return frame
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    # Price breaks timestamp ties so the result does not depend on input order
    return frame.sort_values(["timestamp", "price"], kind="mergesort").reset_index(drop=True)
