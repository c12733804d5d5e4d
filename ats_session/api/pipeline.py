"""Authenticated JSON request pipeline with typed errors."""

from __future__ import annotations

import logging
import uuid
from http import HTTPStatus
from json import JSONDecodeError
from typing import TYPE_CHECKING, TypeAlias, cast

from ats_session.api.errors import ApiError, ResponseDecodeError, TransportError
from ats_session.api.refresh import TokenRefreshCoordinator
from ats_session.api.transport import (
    JSON_CONTENT_TYPE,
    HttpxTransport,
    PendingRequest,
    RefreshingTransport,
)
from ats_session.config.logging import correlation_id

if TYPE_CHECKING:
    from collections.abc import Mapping

    import httpx

    from ats_session.auth import CredentialStore
    from ats_session.config.settings import ClientSettings

JSONBody: TypeAlias = dict[str, object] | list[object] | str | int | float | bool | None

logger = logging.getLogger(__name__)


class RequestPipeline:
    """Issue one authenticated call and decode its JSON result.

    The chain is `RefreshingTransport(HttpxTransport)`: bearer injection and
    the single retry after a refresh live in the middleware, so every call
    site shares the same single-flight refresh.
    """

    _base: HttpxTransport
    _chain: RefreshingTransport
    _credentials: CredentialStore
    _coordinator: TokenRefreshCoordinator

    def __init__(
        self,
        *,
        base_url: str,
        credentials: CredentialStore,
        timeout: float = 10.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Build the middleware chain around an httpx transport."""
        self._credentials = credentials
        self._base = HttpxTransport(
            base_url=base_url,
            timeout=timeout,
            transport=http_transport,
        )
        self._coordinator = TokenRefreshCoordinator(
            transport=self._base,
            credentials=credentials,
        )
        self._chain = RefreshingTransport(
            inner=self._base,
            credentials=credentials,
            coordinator=self._coordinator,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        credentials: CredentialStore,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestPipeline:
        """Build a pipeline from resolved client settings."""
        return cls(
            base_url=settings.api_url,
            credentials=credentials,
            timeout=settings.request_timeout,
            http_transport=http_transport,
        )

    @property
    def credentials(self) -> CredentialStore:
        """Return the credential store injected into this pipeline."""
        return self._credentials

    @property
    def refresh_coordinator(self) -> TokenRefreshCoordinator:
        """Return the coordinator shared by every request of this pipeline."""
        return self._coordinator

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: object | None = None,
        *,
        params: Mapping[str, str] | None = None,
    ) -> JSONBody:
        """Send one request; raise `ApiError` for non-2xx responses."""
        pending = PendingRequest(
            endpoint=endpoint,
            method=method.upper(),
            headers={"Content-Type": JSON_CONTENT_TYPE},
            body=body,
            params=params,
        )
        token = correlation_id.set(uuid.uuid4().hex)
        try:
            logger.debug("Dispatching %s %s", pending.method, endpoint)
            try:
                response = await self._chain.send(pending)
            except TransportError:
                logger.warning("No response for %s %s", pending.method, endpoint)
                raise
            return _decode_response(response, endpoint=endpoint)
        finally:
            correlation_id.reset(token)

    async def get(
        self,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
    ) -> JSONBody:
        """Send a GET request."""
        return await self.request(endpoint, "GET", params=params)

    async def post(self, endpoint: str, data: object | None = None) -> JSONBody:
        """Send a POST request with an optional JSON body."""
        return await self.request(endpoint, "POST", data)

    async def put(self, endpoint: str, data: object) -> JSONBody:
        """Send a PUT request with a JSON body."""
        return await self.request(endpoint, "PUT", data)

    async def patch(self, endpoint: str, data: object) -> JSONBody:
        """Send a PATCH request with a JSON body."""
        return await self.request(endpoint, "PATCH", data)

    async def delete(self, endpoint: str) -> JSONBody:
        """Send a DELETE request."""
        return await self.request(endpoint, "DELETE")

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._base.aclose()


def _decode_response(response: httpx.Response, *, endpoint: str) -> JSONBody:
    """Map a raw response to parsed JSON or `ApiError`."""
    if not response.is_success:
        raise ApiError(response.status_code, _parse_error_body(response))
    if response.status_code == HTTPStatus.NO_CONTENT or not response.content:
        return {}
    try:
        return cast("JSONBody", response.json())
    except (JSONDecodeError, UnicodeDecodeError) as exc:
        raise ResponseDecodeError.for_endpoint(endpoint, details=str(exc)) from exc


def _parse_error_body(response: httpx.Response) -> object:
    """Return the parsed error body, or `{}` when it is not JSON."""
    try:
        return cast("object", response.json())
    except (JSONDecodeError, UnicodeDecodeError):
        return {}
