"""
Services package for the Stock Proxy API.

This package contains business logic separated from the API layer.
"""
from .cache import ResponseCache, run_cache_sweeper
from .calculations import AlignedSeries, CorrelationResult, PriceCalculations
from .credentials import (
    BearerCredentialAuth, Credential, CredentialCache, CredentialIssuer, IssuedCredential
)
from .upstream import UpstreamClient, build_http_client
from .stock_service import StockService

__all__ = [
    "ResponseCache",
    "run_cache_sweeper",
    "AlignedSeries",
    "CorrelationResult",
    "PriceCalculations",
    "BearerCredentialAuth",
    "Credential",
    "CredentialCache",
    "CredentialIssuer",
    "IssuedCredential",
    "UpstreamClient",
    "build_http_client",
    "StockService",
]
