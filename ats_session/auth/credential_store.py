"""Durable access/refresh token and last-known user persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, cast

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ats_session.api.schemas import User
from ats_session.storage import (
    CredentialsRepository,
    CredentialsRepositoryError,
    CredentialWriter,
    CredentialWriterClosedError,
    create_storage_runtime,
    dispose_storage_runtime,
)

if TYPE_CHECKING:
    from pathlib import Path

    from ats_session.storage import JSONValue, StorageRuntime

ACCESS_TOKEN_KEY = "access_token"  # noqa: S105
REFRESH_TOKEN_KEY = "refresh_token"  # noqa: S105
USER_KEY = "user"
CREDENTIAL_KEYS: tuple[str, ...] = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)

_BACKEND_ERRORS = (
    SQLAlchemyError,
    OSError,
    CredentialsRepositoryError,
    CredentialWriterClosedError,
)

logger = logging.getLogger(__name__)


class CredentialStoreError(RuntimeError):
    """Raised when credential store inputs violate the token pair invariant."""

    @classmethod
    def empty_token(cls, name: str) -> CredentialStoreError:
        """Build deterministic error for empty token values."""
        return cls(f"Cannot store an empty {name}.")

    @classmethod
    def no_refresh_token(cls) -> CredentialStoreError:
        """Build deterministic error for access updates outside a session."""
        return cls("Cannot replace the access token when no refresh token is held.")


@dataclass(frozen=True, slots=True)
class StoredCredentials:
    """Immutable snapshot of the credentials currently held by the client."""

    access_token: str | None = None
    refresh_token: str | None = None
    user: User | None = None


class CredentialStore:
    """Hold tokens and user in memory, writing through to an optional SQLite file.

    Readers always see a complete snapshot because every mutation swaps
    `_snapshot` in a single assignment. Durable writes are submitted to a
    `CredentialWriter`, which writes one at a time and folds a waiting
    snapshot into the newer one, so the last one wins. When the durable
    backend fails the store logs a warning and keeps working in memory.
    """

    _snapshot: StoredCredentials
    _repository: CredentialsRepository | None
    _writer: CredentialWriter | None
    _runtime: StorageRuntime | None

    def __init__(
        self,
        *,
        repository: CredentialsRepository | None = None,
        writer: CredentialWriter | None = None,
        runtime: StorageRuntime | None = None,
    ) -> None:
        """Create a store; without a repository it is memory-only."""
        self._snapshot = StoredCredentials()
        self._repository = repository
        self._writer = writer
        if repository is not None and writer is None:
            self._writer = CredentialWriter(repository)
        self._runtime = runtime

    @classmethod
    def in_memory(cls) -> CredentialStore:
        """Build a store that never touches the filesystem."""
        return cls()

    @classmethod
    def open(cls, db_path: Path | None) -> CredentialStore:
        """Build a store persisted at `db_path`, or memory-only when None."""
        if db_path is None:
            return cls.in_memory()
        try:
            db_path.expanduser().parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.warning(
                "Credential storage directory unavailable; using memory only (path=%s)",
                db_path,
            )
            return cls.in_memory()
        runtime = create_storage_runtime(db_path)
        return cls(
            repository=CredentialsRepository(session_factory=runtime.session_factory),
            runtime=runtime,
        )

    @property
    def snapshot(self) -> StoredCredentials:
        """Return the current immutable credentials snapshot."""
        return self._snapshot

    @property
    def is_durable(self) -> bool:
        """Return True while writes still reach the durable backend."""
        return self._repository is not None

    def get_access_token(self) -> str | None:
        """Return the current access token, if any."""
        return self._snapshot.access_token

    def get_refresh_token(self) -> str | None:
        """Return the current refresh token, if any."""
        return self._snapshot.refresh_token

    def get_user(self) -> User | None:
        """Return the last-known user profile, if any."""
        return self._snapshot.user

    def is_authenticated(self) -> bool:
        """Return True when an access token is present; it is not validated."""
        return self._snapshot.access_token is not None

    async def load(self) -> StoredCredentials:
        """Rehydrate the in-memory snapshot from durable storage."""
        repository = self._repository
        if repository is None:
            return self._snapshot
        try:
            await repository.ensure_schema()
            values = await repository.get_many(keys=CREDENTIAL_KEYS)
        except _BACKEND_ERRORS:
            self._degrade("load")
            return self._snapshot

        access = _as_token(values.get(ACCESS_TOKEN_KEY))
        refresh = _as_token(values.get(REFRESH_TOKEN_KEY))
        if access is None or refresh is None:
            if access is not None or refresh is not None:
                logger.warning("Discarding stored credentials with a partial token pair")
            self._snapshot = StoredCredentials()
            if values:
                await self._persist()
            return self._snapshot

        self._snapshot = StoredCredentials(
            access_token=access,
            refresh_token=refresh,
            user=_as_user(values.get(USER_KEY)),
        )
        return self._snapshot

    async def set_tokens(self, access: str, refresh: str) -> None:
        """Replace both tokens together."""
        if not access:
            raise CredentialStoreError.empty_token(ACCESS_TOKEN_KEY)
        if not refresh:
            raise CredentialStoreError.empty_token(REFRESH_TOKEN_KEY)
        self._snapshot = replace(
            self._snapshot,
            access_token=access,
            refresh_token=refresh,
        )
        await self._persist()

    async def set_access_token(self, access: str) -> None:
        """Replace only the access token after a successful refresh."""
        if not access:
            raise CredentialStoreError.empty_token(ACCESS_TOKEN_KEY)
        if self._snapshot.refresh_token is None:
            raise CredentialStoreError.no_refresh_token()
        self._snapshot = replace(self._snapshot, access_token=access)
        await self._persist()

    async def set_session(self, *, access: str, refresh: str, user: User) -> None:
        """Store a freshly issued token pair with its user in one write."""
        if not access:
            raise CredentialStoreError.empty_token(ACCESS_TOKEN_KEY)
        if not refresh:
            raise CredentialStoreError.empty_token(REFRESH_TOKEN_KEY)
        self._snapshot = StoredCredentials(
            access_token=access,
            refresh_token=refresh,
            user=user,
        )
        await self._persist()

    async def set_user(self, user: User | None) -> None:
        """Replace the last-known user profile."""
        self._snapshot = replace(self._snapshot, user=user)
        await self._persist()

    async def clear_tokens(self) -> None:
        """Remove access token, refresh token and user."""
        self._snapshot = StoredCredentials()
        await self._persist()

    async def aclose(self) -> None:
        """Flush pending writes and release the database engine."""
        if self._writer is not None:
            await self._writer.close()
        if self._runtime is not None:
            await dispose_storage_runtime(self._runtime)
            self._runtime = None

    async def _persist(self) -> None:
        """Write the snapshot taken at call time to the durable backend."""
        writer = self._writer
        if self._repository is None or writer is None:
            return
        try:
            await writer.submit(_snapshot_values(self._snapshot))
        except _BACKEND_ERRORS:
            self._degrade("write")

    def _degrade(self, operation: str) -> None:
        """Drop the durable backend and continue memory-only."""
        if self._repository is None:
            return
        logger.warning(
            "Credential storage %s failed; continuing with in-memory credentials",
            operation,
            exc_info=True,
        )
        self._repository = None


def _snapshot_values(snapshot: StoredCredentials) -> dict[str, JSONValue | None]:
    """Map a snapshot onto durable key values; None deletes a key."""
    user_value: JSONValue | None = None
    if snapshot.user is not None:
        user_value = cast("JSONValue", snapshot.user.model_dump(mode="json"))
    return {
        ACCESS_TOKEN_KEY: snapshot.access_token,
        REFRESH_TOKEN_KEY: snapshot.refresh_token,
        USER_KEY: user_value,
    }


def _as_token(value: object) -> str | None:
    """Accept only non-empty string tokens from storage."""
    if isinstance(value, str) and value:
        return value
    return None


def _as_user(value: object) -> User | None:
    """Decode a stored user payload, dropping it when it no longer validates."""
    if value is None:
        return None
    try:
        return User.model_validate(value)
    except ValidationError:
        logger.warning("Discarding stored user payload that failed validation")
        return None
