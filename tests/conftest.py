"""
Shared fixtures: a simulated clock and an in-process pricing service double.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from stock_proxy.services import (
    CredentialCache, CredentialIssuer, ResponseCache, StockService, UpstreamClient,
    build_http_client
)

BASE_URL = "http://pricing.test/evaluation-service"
T0 = datetime(2025, 5, 8, 4, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def quote(price: float, minute: float, base: datetime = T0) -> Dict[str, Any]:
    """Upstream-shaped quote ``minute`` minutes after ``base``."""
    ts = base + timedelta(minutes=minute)
    return {"price": price, "lastUpdatedAt": ts.isoformat().replace("+00:00", "Z")}


def history(prices: List[float], start_minute: float = 0, step: float = 1) -> List[Dict[str, Any]]:
    return [quote(p, start_minute + i * step) for i, p in enumerate(prices)]


class PricingServiceDouble:
    """
    Stand-in for the upstream pricing service, served through httpx.MockTransport.

    Records every request so tests can assert on call counts.
    """

    def __init__(self):
        self.stocks = {"Nvidia Corporation": "NVDA", "PayPal Holdings, Inc.": "PYPL"}
        self.histories: Dict[str, List[Dict[str, Any]]] = {
            "NVDA": history([666.66, 212.13, 981.47, 475.02, 550.10]),
            "PYPL": history([680.59, 205.00, 990.12, 460.73, 571.95], start_minute=0.5),
        }
        self.quotes: Dict[str, Dict[str, Any]] = {"NVDA": quote(700.25, 10)}
        self.failures: Dict[str, Tuple[int, Any]] = {}
        self.holds: Dict[str, asyncio.Event] = {}
        self.cancelled: List[str] = []
        self.expires_in = 300
        self.tokens_issued = 0
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []
        self.authorization: List[Optional[str]] = []
        self.override = None  # async handler replacing the default routing

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path_suffix: str, method: str = "GET") -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p.endswith(path_suffix))

    @property
    def data_calls(self) -> int:
        return sum(1 for m, _, _ in self.calls if m == "GET")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path, dict(request.url.params)))
        if self.override is not None:
            return await self.override(request)

        for suffix, (status, body) in self.failures.items():
            if path.endswith(suffix):
                return httpx.Response(status, json=body)

        if request.method == "POST" and path.endswith("/auth"):
            self.tokens_issued += 1
            return httpx.Response(200, json={
                "access_token": f"token-{self.tokens_issued}",
                "expires_in": self.expires_in,
                "token_type": "Bearer",
            })

        self.authorization.append(request.headers.get("Authorization"))

        if path.endswith("/stocks"):
            return httpx.Response(200, json={"stocks": self.stocks})

        ticker = path.rsplit("/", 1)[-1]
        if ticker in self.holds:
            try:
                await self.holds[ticker].wait()
            except asyncio.CancelledError:
                self.cancelled.append(ticker)
                raise

        if "minutes" in request.url.params:
            return httpx.Response(200, json=self.histories.get(ticker, []))
        if ticker in self.quotes:
            return httpx.Response(200, json={"stock": self.quotes[ticker]})
        return httpx.Response(404, json={"message": f"unknown ticker {ticker}"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pricing() -> PricingServiceDouble:
    return PricingServiceDouble()


@pytest_asyncio.fixture
async def http_client(pricing):
    client = build_http_client(base_url=BASE_URL, transport=pricing.transport)
    yield client
    await client.aclose()


@pytest.fixture
def credentials(http_client, clock) -> CredentialCache:
    issuer = CredentialIssuer(http_client, {"clientID": "test-client", "clientSecret": "secret"})
    return CredentialCache(issuer, safety_margin_seconds=60, clock=clock)


@pytest.fixture
def upstream(http_client, credentials) -> UpstreamClient:
    return UpstreamClient(http_client, credentials)


@pytest.fixture
def stock_service(upstream, credentials, clock) -> StockService:
    return StockService(upstream, ResponseCache(clock=clock), credentials)


@pytest_asyncio.fixture
async def client(stock_service):
    """API client talking to the app in-process, wired to the test service."""
    from stock_proxy.main import app, get_stock_service

    app.dependency_overrides[get_stock_service] = lambda: stock_service
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as api_client:
        yield api_client
    app.dependency_overrides.clear()
