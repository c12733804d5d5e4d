"""Tests for transparent, single-flight access token refresh."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import pytest

from ats_session.api import ApiError, AuthApi, RequestPipeline
from ats_session.auth import CredentialStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tests.mocks.fake_auth_server import FakeAuthServer

TEST_API_URL = "http://testserver/api/v1"
REGISTERED_PHONE = "09120000001"
CONCURRENT_CALLERS = 5
REFRESH_DELAY_SECONDS = 0.05
REFRESH_PATH = "/api/v1/auth/token/refresh/"
PROFILE_PATH = "/api/v1/auth/profile/"


@pytest.fixture
async def signed_in_pipeline(
    fake_server: FakeAuthServer,
    asgi_transport: httpx.ASGITransport,
) -> AsyncIterator[RequestPipeline]:
    """Pipeline holding a valid token pair issued by the fake backend."""
    access, refresh = fake_server.issue_tokens_for(REGISTERED_PHONE)
    credentials = CredentialStore.in_memory()
    await credentials.set_tokens(access, refresh)
    pipeline = RequestPipeline(
        base_url=TEST_API_URL,
        credentials=credentials,
        http_transport=asgi_transport,
    )
    try:
        yield pipeline
    finally:
        await pipeline.aclose()


@pytest.mark.asyncio
async def test_valid_access_token_never_triggers_refresh(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure concurrent calls with a valid token never hit the refresh endpoint."""
    auth = AuthApi(signed_in_pipeline)

    users = await asyncio.gather(
        *(auth.get_profile() for _ in range(CONCURRENT_CALLERS)),
    )

    if {user.phone for user in users} != {REGISTERED_PHONE}:
        raise AssertionError
    if fake_server.count("refresh") != 0:
        raise AssertionError
    if signed_in_pipeline.refresh_coordinator.attempts != 0:
        raise AssertionError


@pytest.mark.asyncio
async def test_expired_access_token_is_refreshed_transparently(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure the caller sees only the final body, never the intermediate 401."""
    credentials = signed_in_pipeline.credentials
    stale_access = credentials.get_access_token()
    refresh_token = credentials.get_refresh_token()
    fake_server.expire_access_tokens()

    user = await AuthApi(signed_in_pipeline).get_profile()

    if user.phone != REGISTERED_PHONE:
        raise AssertionError
    if fake_server.count("refresh") != 1:
        raise AssertionError
    if credentials.get_access_token() in {None, stale_access}:
        raise AssertionError
    if credentials.get_refresh_token() != refresh_token:
        raise AssertionError


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure N concurrent 401s cause exactly one refresh and N retries."""
    fake_server.expire_access_tokens()
    fake_server.refresh_delay = REFRESH_DELAY_SECONDS
    auth = AuthApi(signed_in_pipeline)

    users = await asyncio.gather(
        *(auth.get_profile() for _ in range(CONCURRENT_CALLERS)),
    )

    new_bearer = f"Bearer {signed_in_pipeline.credentials.get_access_token()}"
    if len(users) != CONCURRENT_CALLERS:
        raise AssertionError
    if fake_server.count("refresh") != 1:
        raise AssertionError
    if signed_in_pipeline.refresh_coordinator.attempts != 1:
        raise AssertionError
    retries = [bearer for bearer in fake_server.profile_bearers if bearer == new_bearer]
    if len(retries) != CONCURRENT_CALLERS:
        raise AssertionError
    if len(fake_server.profile_bearers) != CONCURRENT_CALLERS * 2:
        raise AssertionError


@pytest.mark.asyncio
@pytest.mark.parametrize("refresh_status", [401, 403, 500, 503])
async def test_refresh_failure_clears_credentials_for_every_caller(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
    refresh_status: int,
) -> None:
    """Ensure a rejected refresh clears the session once for all callers."""
    fake_server.expire_access_tokens()
    fake_server.refresh_delay = REFRESH_DELAY_SECONDS
    fake_server.refresh_status = refresh_status
    auth = AuthApi(signed_in_pipeline)

    results = await asyncio.gather(
        *(auth.get_profile() for _ in range(CONCURRENT_CALLERS)),
        return_exceptions=True,
    )

    for result in results:
        if not isinstance(result, ApiError) or not result.is_unauthorized:
            raise AssertionError
    credentials = signed_in_pipeline.credentials
    if credentials.get_access_token() is not None:
        raise AssertionError
    if credentials.get_refresh_token() is not None:
        raise AssertionError
    if credentials.is_authenticated():
        raise AssertionError
    if fake_server.count("refresh") != 1:
        raise AssertionError


@pytest.mark.asyncio
async def test_refresh_token_expiring_mid_refresh_clears_session(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure a refresh token that dies during the exchange ends the session."""
    fake_server.expire_access_tokens()
    fake_server.refresh_delay = REFRESH_DELAY_SECONDS

    async def _revoke_during_refresh() -> None:
        await asyncio.sleep(REFRESH_DELAY_SECONDS / 2)
        fake_server.revoke_refresh_tokens()

    outcome, _ = await asyncio.gather(
        AuthApi(signed_in_pipeline).get_profile(),
        _revoke_during_refresh(),
        return_exceptions=True,
    )

    if not isinstance(outcome, ApiError) or not outcome.is_unauthorized:
        raise AssertionError
    if signed_in_pipeline.credentials.is_authenticated():
        raise AssertionError


@pytest.mark.asyncio
async def test_caller_after_failed_refresh_does_not_refresh_again(
    signed_in_pipeline: RequestPipeline,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure a 401 after the session was cleared makes no refresh call."""
    fake_server.expire_access_tokens()
    fake_server.refresh_status = 401
    auth = AuthApi(signed_in_pipeline)

    with pytest.raises(ApiError):
        _ = await auth.get_profile()
    with pytest.raises(ApiError):
        _ = await auth.get_profile()

    if fake_server.count("refresh") != 1:
        raise AssertionError
    refreshed = await signed_in_pipeline.refresh_coordinator.refresh()
    if refreshed:
        raise AssertionError
    if fake_server.count("refresh") != 1:
        raise AssertionError


async def _profile_with_failing_refresh(
    answer_refresh: Callable[[httpx.Request], httpx.Response],
) -> tuple[object, CredentialStore, list[str]]:
    """Request the profile with an expired token while refresh misbehaves."""
    paths: list[str] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == REFRESH_PATH:
            return answer_refresh(request)
        return httpx.Response(401, json={"detail": "Token expired"}, request=request)

    credentials = CredentialStore.in_memory()
    await credentials.set_tokens("expired-access", "live-refresh")
    pipeline = RequestPipeline(
        base_url=TEST_API_URL,
        credentials=credentials,
        http_transport=httpx.MockTransport(_handle),
    )
    try:
        outcome: object = await AuthApi(pipeline).get_profile()
    except ApiError as exc:
        outcome = exc
    finally:
        await pipeline.aclose()
    return outcome, credentials, paths


def _assert_original_401_and_signed_out(
    outcome: object,
    credentials: CredentialStore,
    paths: list[str],
) -> None:
    if not isinstance(outcome, ApiError) or not outcome.is_unauthorized:
        raise AssertionError
    if outcome.data != {"detail": "Token expired"}:
        raise AssertionError
    if credentials.get_access_token() is not None:
        raise AssertionError
    if credentials.get_refresh_token() is not None:
        raise AssertionError
    if credentials.is_authenticated():
        raise AssertionError
    if paths != [PROFILE_PATH, REFRESH_PATH]:
        raise AssertionError


@pytest.mark.asyncio
async def test_unreachable_refresh_endpoint_surfaces_original_401() -> None:
    """Ensure a connection failure during refresh ends the session."""

    def _refuse(request: httpx.Request) -> httpx.Response:
        message = "connection refused"
        raise httpx.ConnectError(message, request=request)

    outcome, credentials, paths = await _profile_with_failing_refresh(_refuse)

    _assert_original_401_and_signed_out(outcome, credentials, paths)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [b'["x"]', b"{}", b'{"access": ""}', b"not json"],
    ids=["list", "empty-object", "empty-access", "not-json"],
)
async def test_malformed_refresh_body_surfaces_original_401(content: bytes) -> None:
    """Ensure a 200 refresh response without a usable token ends the session."""

    def _malformed(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=content,
            headers={"Content-Type": "application/json"},
            request=request,
        )

    outcome, credentials, paths = await _profile_with_failing_refresh(_malformed)

    _assert_original_401_and_signed_out(outcome, credentials, paths)
