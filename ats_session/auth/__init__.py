"""Authentication state module for the ATS session client."""

from .credential_store import (
    ACCESS_TOKEN_KEY,
    CREDENTIAL_KEYS,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    CredentialStore,
    CredentialStoreError,
    StoredCredentials,
)

__all__ = [
    "ACCESS_TOKEN_KEY",
    "CREDENTIAL_KEYS",
    "REFRESH_TOKEN_KEY",
    "USER_KEY",
    "CredentialStore",
    "CredentialStoreError",
    "StoredCredentials",
]
