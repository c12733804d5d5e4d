"""Shared pytest fixtures for the session client tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from ats_session.auth import CredentialStore
from ats_session.config.settings import load_settings
from ats_session.session import SessionManager
from tests.mocks.fake_auth_server import FakeAuthServer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from ats_session.config.settings import ClientSettings

TEST_API_URL = "http://testserver/api/v1"
REGISTERED_PHONE = "09120000001"
REGISTERED_PASSWORD = "secret123"  # noqa: S105


@pytest.fixture
def fake_server() -> FakeAuthServer:
    """Provide a fresh fake backend with one seeded account."""
    server = FakeAuthServer()
    server.add_account(REGISTERED_PHONE, REGISTERED_PASSWORD)
    return server


@pytest.fixture
def asgi_transport(fake_server: FakeAuthServer) -> httpx.ASGITransport:
    """Route httpx traffic into the fake backend in-process."""
    return httpx.ASGITransport(app=fake_server.app)


@pytest.fixture
def client_settings() -> ClientSettings:
    """Settings pointing at the fake backend with dev OTP display on."""
    return load_settings({"ATS_API_URL": TEST_API_URL, "ATS_SHOW_DEV_OTP": "1"})


@pytest.fixture
def credentials_db_path(tmp_path: Path) -> Path:
    """Provide a per-test SQLite file path for credential persistence."""
    return tmp_path / "credentials.sqlite3"


@pytest.fixture
async def credential_store(credentials_db_path: Path) -> AsyncIterator[CredentialStore]:
    """Durable credential store backed by a per-test SQLite file."""
    store = CredentialStore.open(credentials_db_path)
    _ = await store.load()
    try:
        yield store
    finally:
        await store.aclose()


@pytest.fixture
async def session_manager(
    client_settings: ClientSettings,
    asgi_transport: httpx.ASGITransport,
) -> AsyncIterator[SessionManager]:
    """Initialized in-memory session manager talking to the fake backend."""
    manager = SessionManager.create(client_settings, http_transport=asgi_transport)
    _ = await manager.initialize()
    try:
        yield manager
    finally:
        await manager.aclose()
