"""Key/value persistence for the durable client credential keys."""

from __future__ import annotations

import json
import math
from json import JSONDecodeError
from typing import TYPE_CHECKING, TypeAlias, cast

from sqlalchemy import bindparam, text

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from ats_session.storage.db import SessionFactory

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

CREATE_TABLE_STATEMENT = """
CREATE TABLE IF NOT EXISTS client_credentials (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class CredentialsRepositoryError(RuntimeError):
    """Base exception for credentials repository operations."""


class CredentialValueEncodeError(CredentialsRepositoryError):
    """Raised when a credential value cannot be encoded into JSON."""

    @classmethod
    def for_key(cls, key: str, *, details: str) -> CredentialValueEncodeError:
        """Build deterministic encode error with key context."""
        message = f"Credential value for key '{key}' is not JSON-serializable: {details}"
        return cls(message)


class CredentialValueDecodeError(CredentialsRepositoryError):
    """Raised when a stored value_json cannot be decoded."""

    @classmethod
    def for_key(cls, key: str, *, details: str) -> CredentialValueDecodeError:
        """Build deterministic decode error with key context."""
        message = f"Stored credential value for key '{key}' is not valid JSON: {details}"
        return cls(message)


class CredentialsRepository:
    """Read and write `client_credentials` rows as one unit of work."""

    _session_factory: SessionFactory

    def __init__(self, *, session_factory: SessionFactory) -> None:
        """Create repository with an explicit session dependency."""
        self._session_factory = session_factory

    async def ensure_schema(self) -> None:
        """Create the credentials table when it does not exist yet."""
        async with self._session_factory() as session:
            _ = await session.execute(text(CREATE_TABLE_STATEMENT))
            await session.commit()

    async def get_many(self, *, keys: Iterable[str]) -> dict[str, JSONValue]:
        """Fetch decoded values for the requested keys, skipping missing rows."""
        key_list = list(keys)
        if not key_list:
            return {}
        statement = text(
            """
            SELECT key, value_json
            FROM client_credentials
            WHERE key IN :keys
            """,
        ).bindparams(bindparam("keys", expanding=True))
        async with self._session_factory() as session:
            result = await session.execute(statement, {"keys": key_list})
            rows = result.mappings().all()

        values: dict[str, JSONValue] = {}
        for row in rows:
            row_map = cast("Mapping[str, object]", cast("object", row))
            key_obj = row_map.get("key")
            value_json_obj = row_map.get("value_json")
            if not isinstance(key_obj, str) or not isinstance(value_json_obj, str):
                raise CredentialValueDecodeError.for_key(
                    str(key_obj),
                    details="row is missing `key` or `value_json` text.",
                )
            values[key_obj] = _decode_value_json(key=key_obj, value_json=value_json_obj)
        return values

    async def replace(self, *, values: Mapping[str, JSONValue | None]) -> None:
        """Upsert or delete keys in one transaction; `None` deletes the key."""
        upsert = text(
            """
            INSERT INTO client_credentials (key, value_json)
            VALUES (:key, :value_json)
            ON CONFLICT(key) DO UPDATE
            SET value_json = excluded.value_json,
                updated_at = CURRENT_TIMESTAMP
            """,
        )
        delete = text(
            """
            DELETE FROM client_credentials
            WHERE key = :key
            """,
        )
        async with self._session_factory() as session:
            for key, value in values.items():
                if value is None:
                    _ = await session.execute(delete, {"key": key})
                    continue
                _ = await session.execute(
                    upsert,
                    {"key": key, "value_json": _encode_value_json(key=key, value=value)},
                )
            await session.commit()


def _encode_value_json(*, key: str, value: JSONValue) -> str:
    """Serialize a credential value to compact JSON text."""
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise CredentialValueEncodeError.for_key(key, details=str(exc)) from exc


def _decode_value_json(*, key: str, value_json: str) -> JSONValue:
    """Deserialize JSON text and reject non-finite numbers."""
    try:
        decoded = cast("object", json.loads(value_json))
    except JSONDecodeError as exc:
        raise CredentialValueDecodeError.for_key(key, details=str(exc)) from exc
    if isinstance(decoded, float) and not math.isfinite(decoded):
        raise CredentialValueDecodeError.for_key(key, details="non-finite number")
    return cast("JSONValue", decoded)
