"""
Bearer credential lifecycle for the pricing service.

CredentialCache holds the single access token used for every upstream call and
renews it through a credential issuer shortly before it expires. Concurrent
callers that find the token stale share one refresh instead of each calling
the issuer.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..config import settings
from ..exceptions import AuthError
from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedCredential:
    """Token as reported by the issuer. ``expires_in`` is in seconds."""
    access_token: str
    expires_in: float
    token_type: str = "Bearer"


@dataclass(frozen=True)
class Credential:
    """Cached token with its expiry on the cache clock, safety margin already applied."""
    token: str
    expires_at: float


Issuer = Callable[[], Awaitable[IssuedCredential]]


class CredentialIssuer:
    """
    Obtains access tokens from the pricing service's ``POST /auth`` endpoint.

    Never sends a bearer token itself, so it can share the upstream HTTP client.
    """

    def __init__(self, client: httpx.AsyncClient, identity: Dict[str, str]):
        """
        Args:
            client: HTTP client whose base URL points at the pricing service.
            identity: Registration fields the issuer expects in the request body.
        """
        self._client = client
        self._identity = identity

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient) -> "CredentialIssuer":
        return cls(client, {
            "email": settings.auth_email,
            "name": settings.auth_name,
            "rollNo": settings.auth_roll_no,
            "accessCode": settings.auth_access_code,
            "clientID": settings.client_id,
            "clientSecret": settings.client_secret,
        })

    async def __call__(self) -> IssuedCredential:
        try:
            response = await self._client.post("/auth", json=self._identity)
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as e:
            body = response_body(e.response)
            logger.error(f"Authentication failed: {e.response.status_code} {body}")
            raise AuthError(
                "Credential issuer rejected the request",
                status_code=e.response.status_code,
                body=body,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Authentication request failed: {e}")
            raise AuthError(f"Could not reach credential issuer: {e}") from e
        except ValueError as e:
            raise AuthError("Credential issuer returned a malformed body") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        expires_in = payload.get("expires_in") if isinstance(payload, dict) else None
        if not token or not isinstance(expires_in, (int, float)):
            raise AuthError("Credential issuer response is missing access_token or expires_in",
                            body=payload)

        return IssuedCredential(
            access_token=token,
            expires_in=float(expires_in),
            token_type=payload.get("token_type") or "Bearer",
        )


class CredentialCache:
    """
    Single bearer credential with coalesced refresh.

    The stored expiry is ``issued_at + expires_in - safety_margin`` so a token
    is always renewed before the issuer considers it expired.
    """

    def __init__(
        self,
        issuer: Issuer,
        safety_margin_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the credential cache.

        Args:
            issuer: Coroutine function returning a fresh IssuedCredential.
            safety_margin_seconds: Seconds subtracted from the reported lifetime.
                Defaults to config value.
            clock: Monotonic time source in seconds. Injectable for tests.
        """
        self._issuer = issuer
        self._safety_margin = (
            settings.credential_safety_margin_seconds
            if safety_margin_seconds is None else safety_margin_seconds
        )
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def get_valid_credential(self) -> str:
        """
        Return a token that is valid for at least the safety margin.

        Returns:
            The bearer token.

        Raises:
            AuthError: If the issuer could not supply a credential.
        """
        credential = self._credential
        if credential is not None and self._clock() < credential.expires_at:
            logger.debug("Using cached credential")
            return credential.token

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh())
            self._refresh_task.add_done_callback(self._on_refresh_done)

        # Shielded so one cancelled waiter does not cancel the refresh for the rest
        return await asyncio.shield(self._refresh_task)

    def invalidate(self, token: Optional[str] = None) -> bool:
        """
        Drop the cached credential so the next call refreshes.

        Args:
            token: Only drop the credential if it is still this token. A
                rejection of an older token leaves a newer credential in place.
                None drops whatever is cached.

        Returns:
            True if a credential was dropped.
        """
        credential = self._credential
        if credential is None:
            return False
        if token is not None and credential.token != token:
            logger.debug("Ignoring rejection of a superseded credential")
            return False
        logger.info("Discarding cached credential")
        self._credential = None
        return True

    async def _refresh(self) -> str:
        issued_at = self._clock()
        logger.info("Requesting new credential from issuer")
        try:
            issued = await self._issuer()
        except AuthError:
            raise
        except Exception as e:
            logger.error(f"Credential issuer failed: {e}")
            raise AuthError(f"Failed to obtain credential: {e}") from e

        if issued.expires_in <= self._safety_margin:
            logger.warning(
                f"Credential lifetime {issued.expires_in}s is within the "
                f"{self._safety_margin}s safety margin; it will be renewed on next use"
            )

        self._credential = Credential(
            token=issued.access_token,
            expires_at=issued_at + issued.expires_in - self._safety_margin,
        )
        logger.info(f"Obtained new credential valid for {issued.expires_in:.0f}s")
        return issued.access_token

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._refresh_task = None
        if not task.cancelled():
            # Waiters re-raise it; retrieving here avoids the never-retrieved warning
            task.exception()


class BearerCredentialAuth(httpx.Auth):
    """
    httpx auth flow that attaches the cached credential to each request.

    A 401/403 answer means upstream no longer accepts the token the request
    carried. That token is dropped if it is still the cached one, and the next
    request refreshes it.
    """

    def __init__(self, credentials: CredentialCache):
        self._credentials = credentials

    async def async_auth_flow(self, request: httpx.Request):
        token = await self._credentials.get_valid_credential()
        request.headers["Authorization"] = f"Bearer {token}"
        response = yield request
        if response.status_code in (401, 403):
            self._credentials.invalidate(token)


def response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
