"""Immutable session snapshots published to UI subscribers."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ats_session.api.schemas import OtpPurpose, TokenResponse, User


def _no_field_errors() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Session:
    """Token pair plus the user it was issued for."""

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    token_type: str
    user: User | None

    @classmethod
    def from_token_response(cls, response: TokenResponse) -> Session:
        """Build a session from a login/register response."""
        tokens = response.tokens
        return cls(
            access_token=tokens.access,
            refresh_token=tokens.refresh,
            access_expires_in=tokens.access_expires_in,
            refresh_expires_in=tokens.refresh_expires_in,
            token_type=tokens.token_type,
            user=response.user,
        )


@dataclass(frozen=True, slots=True)
class OtpState:
    """What the client remembers between OTP steps: phone, purpose, verified."""

    sent: bool = False
    phone: str | None = None
    purpose: OtpPurpose | None = None
    verified: bool = False

    def is_verified_for(self, *, phone: str, purpose: OtpPurpose) -> bool:
        """Return True only for a verification of this phone under this purpose."""
        return self.verified and self.phone == phone and self.purpose == purpose


@dataclass(frozen=True, slots=True)
class OtpSendResult:
    """Outcome of `send_otp`; `code` is the development echo, display only."""

    success: bool
    code: str | None = None
    expires_in: int = 0


@dataclass(frozen=True, slots=True)
class SessionState:
    """Observable state the UI binds to."""

    is_authenticated: bool = False
    user: User | None = None
    is_loading: bool = False
    error: str | None = None
    field_errors: Mapping[str, str] = field(default_factory=_no_field_errors)
    otp: OtpState = field(default_factory=OtpState)
