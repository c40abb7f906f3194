"""Authenticated HTTP transport for the remote TrackIt API."""

import logging
from typing import Any, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from trackit.core.errors import ConflictError, NetworkError, ServerError, TokenExpired, TrackitError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class TokenProvider(Protocol):
    def get_access_token(self) -> str | None: ...

    async def refresh_token(self, stale_token: str | None = None) -> str: ...


class BearerTokenAuth(httpx.Auth):
    """
    Attach the current access token and recover once from a 401.

    The request goes out without an Authorization header when no token is
    available. On a 401 the token is refreshed and the request is sent
    exactly one more time; whatever comes back from that retry is returned
    to the caller unchanged.
    """

    def __init__(self, tokens: TokenProvider):
        self.tokens = tokens

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("BearerTokenAuth requires an httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request):
        token = self.tokens.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        else:
            logger.debug(f"No access token, sending {request.method} {request.url.path} without auth header")

        response = yield request

        if response.status_code != 401:
            return

        logger.info(f"Got 401 for {request.method} {request.url.path}, attempting token refresh")
        try:
            new_token = await self.tokens.refresh_token(stale_token=token)
        except TrackitError as e:
            logger.warning(f"Token refresh failed: {e}")
            return

        if not new_token:
            return

        request.headers["Authorization"] = f"Bearer {new_token}"
        logger.info(f"Token refreshed, retrying {request.method} {request.url.path}")
        yield request


class ApiClient:
    """Async HTTP client bound to the API base URL."""

    def __init__(
        self,
        base_url: str,
        timeout: httpx.Timeout,
        auth: Optional[httpx.Auth] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.auth = auth
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=self.auth,
                timeout=self.timeout,
                transport=self.transport,
            )
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Execute one request; transport failures become NetworkError."""
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e!r}")
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise NetworkError(f"Network error: {method} {path}: {e}") from e


def error_message(response: httpx.Response) -> str:
    """Best-effort human-readable message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return response.text[:200]


def parse_response(response: httpx.Response, model: type[M], context: str) -> M:
    """
    Validate a response into a pydantic model.

    Raises:
        TokenExpired: still unauthorized after the transport's refresh retry
        ConflictError: the addressed entry does not exist on the server
        ServerError: any other non-2xx status or an unreadable body
    """
    if response.status_code == 401:
        raise TokenExpired(f"{context}: unauthorized")
    if response.status_code == 404:
        raise ConflictError(f"{context}: not found on server")
    if response.is_error:
        raise ServerError(
            f"{context}: HTTP {response.status_code}: {error_message(response)}",
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise ServerError(f"{context}: invalid JSON body: {response.text[:200]}", response.status_code) from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ServerError(f"{context}: unexpected response shape: {e}", response.status_code) from e
