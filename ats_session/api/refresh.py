"""Single-flight exchange of the refresh token for a new access token."""

from __future__ import annotations

import asyncio
import logging
from http import HTTPStatus
from json import JSONDecodeError
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ats_session.api.errors import TransportError
from ats_session.api.schemas import RefreshResponse
from ats_session.api.transport import JSON_CONTENT_TYPE, PendingRequest

if TYPE_CHECKING:
    from ats_session.api.transport import Transport
    from ats_session.auth import CredentialStore

REFRESH_ENDPOINT = "/auth/token/refresh/"  # noqa: S105

logger = logging.getLogger(__name__)


class TokenRefreshCoordinator:
    """Refresh the access token at most once for every group of 401s.

    The first caller starts the network exchange; callers arriving while it
    is in flight await the same task. A caller whose 401 was produced by a
    token that has already been replaced skips the exchange and reuses the
    newer token. Any failure clears the whole session.
    """

    _transport: Transport
    _credentials: CredentialStore
    _in_flight: asyncio.Task[bool] | None
    _attempts: int

    def __init__(self, *, transport: Transport, credentials: CredentialStore) -> None:
        """Bind the coordinator to the base transport and credential store."""
        self._transport = transport
        self._credentials = credentials
        self._in_flight = None
        self._attempts = 0

    @property
    def attempts(self) -> int:
        """Number of refresh exchanges actually sent to the server."""
        return self._attempts

    async def refresh(self, *, failed_access_token: str | None = None) -> bool:
        """Return True when a usable access token is available afterwards."""
        in_flight = self._in_flight
        if in_flight is not None:
            return await asyncio.shield(in_flight)

        if self._credentials.get_refresh_token() is None:
            return False
        current_access = self._credentials.get_access_token()
        if (
            failed_access_token is not None
            and current_access is not None
            and current_access != failed_access_token
        ):
            logger.debug("Access token already replaced; skipping refresh exchange")
            return True

        task = asyncio.create_task(self._exchange())
        self._in_flight = task
        task.add_done_callback(self._release)
        return await asyncio.shield(task)

    def _release(self, task: asyncio.Task[bool]) -> None:
        """Forget the finished exchange so the next 401 group starts a new one."""
        if self._in_flight is task:
            self._in_flight = None

    async def _exchange(self) -> bool:
        """POST the refresh token and store the new access token."""
        refresh_token = self._credentials.get_refresh_token()
        if refresh_token is None:
            return False
        self._attempts += 1
        request = PendingRequest(
            endpoint=REFRESH_ENDPOINT,
            method="POST",
            headers={"Content-Type": JSON_CONTENT_TYPE},
            body={"refresh": refresh_token},
        )
        try:
            response = await self._transport.send(request)
        except TransportError:
            logger.warning("Token refresh failed without a response", exc_info=True)
            await self._credentials.clear_tokens()
            return False

        if not HTTPStatus.OK <= response.status_code < HTTPStatus.MULTIPLE_CHOICES:
            logger.warning(
                "Token refresh rejected with status %s; clearing session",
                response.status_code,
            )
            await self._credentials.clear_tokens()
            return False

        try:
            payload = RefreshResponse.model_validate(response.json())
        except (JSONDecodeError, ValidationError):
            logger.warning("Token refresh returned a malformed body; clearing session")
            await self._credentials.clear_tokens()
            return False

        # Logout may have cleared the session while the exchange was in flight.
        if self._credentials.get_refresh_token() != refresh_token:
            return False
        await self._credentials.set_access_token(payload.access)
        logger.info("Access token refreshed")
        return True
