"""Base HTTP transport and the refresh-on-401 middleware that wraps it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

import httpx

from ats_session.api.errors import TransportError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ats_session.api.refresh import TokenRefreshCoordinator
    from ats_session.auth import CredentialStore

JSON_CONTENT_TYPE = "application/json"
AUTHORIZATION_HEADER = "Authorization"

logger = logging.getLogger(__name__)


def _empty_headers() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """Description of one in-flight call, kept so it can be replayed once."""

    endpoint: str
    method: str
    headers: Mapping[str, str] = field(default_factory=_empty_headers)
    body: object | None = None
    params: Mapping[str, str] | None = None

    def with_bearer(self, access_token: str | None) -> PendingRequest:
        """Return a copy carrying `access_token`, or no Authorization header."""
        headers = {
            key: value
            for key, value in self.headers.items()
            if key.lower() != AUTHORIZATION_HEADER.lower()
        }
        if access_token:
            headers[AUTHORIZATION_HEADER] = f"Bearer {access_token}"
        return replace(self, headers=MappingProxyType(headers))

    @property
    def bearer_token(self) -> str | None:
        """Return the bearer token this request carries, if any."""
        for key, value in self.headers.items():
            if key.lower() == AUTHORIZATION_HEADER.lower() and value.startswith(
                "Bearer ",
            ):
                return value.removeprefix("Bearer ")
        return None


class Transport(Protocol):
    """One hop of the request chain."""

    async def send(self, request: PendingRequest) -> httpx.Response:
        """Dispatch `request` and return the raw HTTP response."""
        ...


class HttpxTransport:
    """Send pending requests with a shared `httpx.AsyncClient`."""

    _client: httpx.AsyncClient
    _owns_client: bool

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the transport, owning the client unless one is injected."""
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url,
                timeout=timeout,
                transport=transport,
            )
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client

    def url_for(self, endpoint: str) -> str:
        """Return the absolute URL for an endpoint path."""
        return str(self._client.base_url.join(endpoint.lstrip("/")))

    async def send(self, request: PendingRequest) -> httpx.Response:
        """Send the request; network failures become `TransportError`."""
        url = self.url_for(request.endpoint)
        try:
            return await self._client.request(
                request.method,
                url,
                headers=dict(request.headers),
                json=request.body,
                params=request.params,
            )
        except httpx.HTTPError as exc:
            raise TransportError.for_request(
                method=request.method,
                url=url,
                details=str(exc) or type(exc).__name__,
            ) from exc

    async def aclose(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            await self._client.aclose()


class RefreshingTransport:
    """Attach the bearer token and replay a 401 once after a token refresh."""

    _inner: Transport
    _credentials: CredentialStore
    _coordinator: TokenRefreshCoordinator

    def __init__(
        self,
        *,
        inner: Transport,
        credentials: CredentialStore,
        coordinator: TokenRefreshCoordinator,
    ) -> None:
        """Wrap `inner` with bearer injection and retry-once semantics."""
        self._inner = inner
        self._credentials = credentials
        self._coordinator = coordinator

    async def send(self, request: PendingRequest) -> httpx.Response:
        """Send with the current token; on 401 refresh and retry exactly once."""
        first_attempt = request.with_bearer(self._credentials.get_access_token())
        response = await self._inner.send(first_attempt)
        if response.status_code != HTTPStatus.UNAUTHORIZED:
            return response
        if self._credentials.get_refresh_token() is None:
            return response

        logger.info(
            "Received 401 for %s %s; attempting token refresh",
            request.method,
            request.endpoint,
        )
        refreshed = await self._coordinator.refresh(
            failed_access_token=first_attempt.bearer_token,
        )
        if not refreshed:
            return response

        retry = request.with_bearer(self._credentials.get_access_token())
        logger.info("Retrying %s %s after refresh", request.method, request.endpoint)
        return await self._inner.send(retry)
