"""Storage module for the ATS session client."""

from .credential_writer import (
    CredentialSink,
    CredentialWriter,
    CredentialWriterClosedError,
)
from .credentials_repo import (
    CredentialsRepository,
    CredentialsRepositoryError,
    CredentialValueDecodeError,
    CredentialValueEncodeError,
    JSONValue,
)
from .db import (
    StorageRuntime,
    build_sqlite_url,
    create_session_factory,
    create_storage_runtime,
    dispose_storage_runtime,
)

__all__ = [
    "CredentialSink",
    "CredentialValueDecodeError",
    "CredentialValueEncodeError",
    "CredentialWriter",
    "CredentialWriterClosedError",
    "CredentialsRepository",
    "CredentialsRepositoryError",
    "JSONValue",
    "StorageRuntime",
    "build_sqlite_url",
    "create_session_factory",
    "create_storage_runtime",
    "dispose_storage_runtime",
]
