"""
Error taxonomy for the Stock Proxy API.

The HTTP layer maps each class to a status code; services raise them directly.
"""
from typing import Any, Optional


class StockProxyError(Exception):
    """Base class for all errors raised by the proxy core."""


class ValidationError(StockProxyError):
    """Malformed client input. Raised before any cache or upstream access."""


class AuthError(StockProxyError):
    """The credential issuer could not supply a usable bearer token."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamError(StockProxyError):
    """
    Non-auth failure talking to the pricing service.

    Carries the upstream status and body (when there was a response) so the
    failure can be diagnosed from logs and error payloads.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            return f"{message} (upstream status {self.status_code})"
        return message
