"""Typed wrappers over the `/auth/` endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError

from ats_session.api.errors import ResponseDecodeError
from ats_session.api.schemas import (
    MessageResponse,
    OtpPurpose,
    SendOtpResponse,
    TokenResponse,
    User,
    VerifyOtpResponse,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ats_session.api.pipeline import JSONBody, RequestPipeline

SEND_OTP_ENDPOINT = "/auth/send-otp/"
VERIFY_OTP_ENDPOINT = "/auth/verify-otp/"
REGISTER_ENDPOINT = "/auth/register/"
LOGIN_ENDPOINT = "/auth/login/"
LOGIN_OTP_ENDPOINT = "/auth/login/otp/"
RESET_PASSWORD_ENDPOINT = "/auth/reset-password/"  # noqa: S105
LOGOUT_ENDPOINT = "/auth/logout/"
PROFILE_ENDPOINT = "/auth/profile/"
CHANGE_PASSWORD_ENDPOINT = "/auth/change-password/"  # noqa: S105

ModelT = TypeVar("ModelT", bound=BaseModel)


class AuthApi:
    """Auth endpoint calls; persistence of the results is left to the caller."""

    _pipeline: RequestPipeline

    def __init__(self, pipeline: RequestPipeline) -> None:
        """Bind endpoint wrappers to one request pipeline."""
        self._pipeline = pipeline

    async def send_otp(
        self,
        phone: str,
        purpose: OtpPurpose = OtpPurpose.REGISTER,
    ) -> SendOtpResponse:
        """Ask the server to issue an OTP for `phone` scoped to `purpose`."""
        body = await self._pipeline.post(
            SEND_OTP_ENDPOINT,
            {"phone": phone, "purpose": purpose.value},
        )
        return _parse(SendOtpResponse, body, endpoint=SEND_OTP_ENDPOINT)

    async def verify_otp(
        self,
        phone: str,
        code: str,
        purpose: OtpPurpose = OtpPurpose.REGISTER,
    ) -> VerifyOtpResponse:
        """Check `code` for `phone` under `purpose`."""
        body = await self._pipeline.post(
            VERIFY_OTP_ENDPOINT,
            {"phone": phone, "code": code, "purpose": purpose.value},
        )
        return _parse(VerifyOtpResponse, body, endpoint=VERIFY_OTP_ENDPOINT)

    async def register(  # noqa: PLR0913
        self,
        *,
        phone: str,
        first_name: str,
        last_name: str,
        password: str,
        password_confirm: str,
        otp_code: str,
        email: str | None = None,
    ) -> TokenResponse:
        """Create an account for an OTP-verified phone."""
        payload: dict[str, object] = {
            "phone": phone,
            "first_name": first_name,
            "last_name": last_name,
            "password": password,
            "password_confirm": password_confirm,
            "otp_code": otp_code,
        }
        if email:
            payload["email"] = email
        body = await self._pipeline.post(REGISTER_ENDPOINT, payload)
        return _parse(TokenResponse, body, endpoint=REGISTER_ENDPOINT)

    async def login(self, phone: str, password: str) -> TokenResponse:
        """Exchange phone and password for a token pair."""
        body = await self._pipeline.post(
            LOGIN_ENDPOINT,
            {"phone": phone, "password": password},
        )
        return _parse(TokenResponse, body, endpoint=LOGIN_ENDPOINT)

    async def login_with_otp(self, phone: str, otp_code: str) -> TokenResponse:
        """Exchange phone and a login-purpose OTP for a token pair."""
        body = await self._pipeline.post(
            LOGIN_OTP_ENDPOINT,
            {"phone": phone, "otp_code": otp_code},
        )
        return _parse(TokenResponse, body, endpoint=LOGIN_OTP_ENDPOINT)

    async def reset_password(
        self,
        *,
        phone: str,
        otp_code: str,
        new_password: str,
        new_password_confirm: str,
    ) -> MessageResponse:
        """Set a new password using a reset-purpose OTP."""
        body = await self._pipeline.post(
            RESET_PASSWORD_ENDPOINT,
            {
                "phone": phone,
                "otp_code": otp_code,
                "new_password": new_password,
                "new_password_confirm": new_password_confirm,
            },
        )
        return _parse(MessageResponse, body, endpoint=RESET_PASSWORD_ENDPOINT)

    async def logout(self, refresh_token: str) -> None:
        """Invalidate `refresh_token` server side."""
        _ = await self._pipeline.post(LOGOUT_ENDPOINT, {"refresh": refresh_token})

    async def get_profile(self) -> User:
        """Fetch the signed-in user's profile."""
        body = await self._pipeline.get(PROFILE_ENDPOINT)
        return _parse(User, body, endpoint=PROFILE_ENDPOINT)

    async def update_profile(self, changes: Mapping[str, object]) -> User:
        """Update profile fields and return the stored profile."""
        body = await self._pipeline.put(PROFILE_ENDPOINT, dict(changes))
        return _parse(User, body, endpoint=PROFILE_ENDPOINT)

    async def change_password(self, old_password: str, new_password: str) -> None:
        """Change the signed-in user's password."""
        _ = await self._pipeline.put(
            CHANGE_PASSWORD_ENDPOINT,
            {"old_password": old_password, "new_password": new_password},
        )


def _parse(
    model: type[ModelT],
    body: JSONBody,
    *,
    endpoint: str,
) -> ModelT:
    """Validate a decoded body against `model`."""
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise ResponseDecodeError.for_endpoint(
            endpoint,
            details=f"{exc.error_count()} validation error(s)",
        ) from exc
