"""
HTTP client for the upstream pricing service.

Every data request is authenticated through BearerCredentialAuth, which pulls
the token from the shared CredentialCache. Responses and failures are logged
through httpx event hooks, and non-auth failures are surfaced as UpstreamError
with the upstream status and body attached. Nothing is retried here.
"""
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..exceptions import AuthError, UpstreamError
from ..logging_config import get_logger
from ..schemas import PricePoint
from .credentials import BearerCredentialAuth, CredentialCache, response_body

logger = get_logger(__name__)


async def _log_request(request: httpx.Request) -> None:
    logger.debug(f"API Request: {request.method} {request.url}")


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.info(f"API Response: {response.status_code} {request.method} {request.url.path}")
    if response.is_error:
        await response.aread()
        logger.error(f"API Error Response {response.status_code}: {response.text[:500]}")


def build_http_client(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the AsyncClient shared by the issuer and the upstream client.

    Args:
        base_url: Pricing service root. Defaults to config value.
        timeout: Per-request timeout in seconds. Defaults to config value.
        transport: Optional transport override (tests use httpx.MockTransport).
    """
    return httpx.AsyncClient(
        base_url=base_url or settings.stock_api_base_url,
        timeout=timeout or settings.upstream_timeout_seconds,
        headers={"Content-Type": "application/json"},
        event_hooks={"request": [_log_request], "response": [_log_response]},
        transport=transport,
    )


class UpstreamClient:
    """
    Authenticated access to the pricing service endpoints.

    Does not cache; StockService decides what to keep.
    """

    def __init__(self, client: httpx.AsyncClient, credentials: CredentialCache):
        """
        Args:
            client: HTTP client pointed at the pricing service.
            credentials: Credential cache providing the bearer token.
        """
        self._client = client
        self._auth = BearerCredentialAuth(credentials)

    async def fetch_all_stocks(self) -> Dict[str, str]:
        """
        Fetch the listed stocks.

        Returns:
            Mapping of company name to ticker.
        """
        payload = await self._get_json("/stocks")
        stocks = payload.get("stocks") if isinstance(payload, dict) else None
        if not isinstance(stocks, dict):
            raise UpstreamError("Malformed stock list from upstream", body=payload)
        return {str(name): str(ticker) for name, ticker in stocks.items()}

    async def fetch_price_history(
        self,
        ticker: str,
        minutes: Optional[int] = None
    ) -> List[PricePoint]:
        """
        Fetch a ticker's price history.

        Args:
            ticker: Validated ticker symbol.
            minutes: Window length. None asks for the current quote only.

        Returns:
            Price points. The current quote comes back as a one-element list
            so callers always handle a sequence.
        """
        params = {"minutes": minutes} if minutes is not None else None
        payload = await self._get_json(f"/stocks/{ticker}", params=params)

        if minutes is None:
            # Single quote, usually wrapped as {"stock": {...}}
            if isinstance(payload, dict) and isinstance(payload.get("stock"), dict):
                payload = payload["stock"]
            raw_points = [payload]
        else:
            raw_points = payload

        if not isinstance(raw_points, list):
            raise UpstreamError(f"Malformed price history for {ticker}", body=payload)

        try:
            history = [PricePoint.model_validate(point) for point in raw_points]
        except PydanticValidationError as e:
            raise UpstreamError(f"Malformed price history for {ticker}: {e}", body=payload) from e

        logger.info(
            f"Retrieved {len(history)} data points for {ticker}"
            f"{f' over the last {minutes} minutes' if minutes else ''}"
        )
        return history

    async def probe(self) -> int:
        """
        Live connectivity check against ``/stocks``.

        Returns:
            Number of stocks listed upstream.
        """
        stocks = await self.fetch_all_stocks()
        return len(stocks)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params, auth=self._auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = response_body(e.response)
            if status in (401, 403):
                raise AuthError(
                    f"Upstream rejected the credential for {path}",
                    status_code=status,
                    body=body,
                ) from e
            raise UpstreamError(f"Upstream request to {path} failed", status_code=status, body=body) from e
        except httpx.RequestError as e:
            logger.error(f"Upstream request to {path} failed: {e}")
            raise UpstreamError(f"Could not reach upstream for {path}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Upstream returned a malformed body for {path}",
                status_code=response.status_code,
                body=response.text[:500],
            ) from e
