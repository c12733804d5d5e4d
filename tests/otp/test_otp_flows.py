"""Tests for the OTP-gated register, OTP login and password reset flows."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ats_session.api import OtpPurpose
from ats_session.config.settings import load_settings
from ats_session.otp import (
    FlowStep,
    FormValidationError,
    OtpFlowStateError,
    OtpLoginFlow,
    PasswordResetFlow,
    RegisterFlow,
    sanitize_otp_code,
)
from ats_session.session import SessionManager

if TYPE_CHECKING:
    import httpx

    from tests.mocks.fake_auth_server import FakeAuthServer

TEST_API_URL = "http://testserver/api/v1"
NEW_PHONE = "09123456789"
REGISTERED_PHONE = "09120000001"
OTP_CODE = "482913"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("12a3456xy", "123456"),
        ("123456", "123456"),
        (" 48-29 13 ", "482913"),
        ("4829131234", "482913"),
        ("abc", ""),
    ],
)
def test_sanitize_otp_code_strips_and_caps(raw: str, expected: str) -> None:
    """Ensure non-digits are stripped and the code is capped at six digits."""
    sanitized = sanitize_otp_code(raw)

    if sanitized != expected:
        raise AssertionError
    if sanitize_otp_code(sanitized) != sanitized:
        raise AssertionError


@pytest.mark.asyncio
async def test_register_flow_reaches_authenticated(
    session_manager: SessionManager,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure phone, code and details steps end in an established session."""
    flow = RegisterFlow(session_manager)

    if not await flow.send_code(NEW_PHONE):
        raise AssertionError
    if flow.step is not FlowStep.OTP or flow.dev_code != OTP_CODE:
        raise AssertionError
    _ = flow.enter_code("48 29 13")
    if not await flow.verify():
        raise AssertionError
    if flow.step is not FlowStep.DETAILS:
        raise AssertionError

    submitted = await flow.submit(
        first_name="Jane",
        last_name="Doe",
        password="secret123",  # noqa: S106
        password_confirm="secret123",  # noqa: S106
    )

    if not submitted or flow.step is not FlowStep.AUTHENTICATED:
        raise AssertionError
    state = session_manager.state
    if not state.is_authenticated or state.user is None:
        raise AssertionError
    if state.user.phone != NEW_PHONE or state.otp.verified:
        raise AssertionError
    if fake_server.count("register") != 1:
        raise AssertionError


@pytest.mark.asyncio
async def test_password_mismatch_blocks_submission_without_network(
    session_manager: SessionManager,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure mismatched confirmation fields never reach the backend."""
    register = RegisterFlow(session_manager)
    _ = await register.send_code(NEW_PHONE)
    _ = register.enter_code(OTP_CODE)
    _ = await register.verify()

    with pytest.raises(FormValidationError, match=r"Passwords do not match\.") as exc_info:
        _ = await register.submit(
            first_name="Jane",
            last_name="Doe",
            password="secret123",  # noqa: S106
            password_confirm="secret124",  # noqa: S106
        )

    if exc_info.value.field != "password_confirm":
        raise AssertionError
    if fake_server.count("register") != 0 or register.step is not FlowStep.DETAILS:
        raise AssertionError
    if register.error != "Passwords do not match.":
        raise AssertionError

    register.close()
    reset = PasswordResetFlow(session_manager)
    _ = await reset.send_code(REGISTERED_PHONE)
    _ = reset.enter_code(OTP_CODE)
    _ = await reset.verify()
    with pytest.raises(FormValidationError):
        _ = await reset.submit(
            new_password="newsecret1",  # noqa: S106
            new_password_confirm="newsecret2",  # noqa: S106
        )

    if fake_server.count("reset_password") != 0:
        raise AssertionError
    if reset.error != "Passwords do not match.":
        raise AssertionError


@pytest.mark.asyncio
async def test_password_reset_flow_ends_on_success_without_session(
    session_manager: SessionManager,
) -> None:
    """Ensure a reset lands on the success step and lets the new password log in."""
    async with PasswordResetFlow(session_manager) as flow:
        _ = await flow.send_code(REGISTERED_PHONE)
        _ = flow.enter_code(OTP_CODE)
        _ = await flow.verify()
        done = await flow.submit(
            new_password="newsecret1",  # noqa: S106
            new_password_confirm="newsecret1",  # noqa: S106
        )

        if not done or flow.step is not FlowStep.SUCCESS:
            raise AssertionError
        if session_manager.state.is_authenticated:
            raise AssertionError

    if flow.step is not FlowStep.PHONE:
        raise AssertionError
    if not await session_manager.login(REGISTERED_PHONE, "newsecret1"):
        raise AssertionError


@pytest.mark.asyncio
async def test_otp_login_flow_signs_in_from_code_step(
    session_manager: SessionManager,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure OTP login goes straight from the code step to authenticated."""
    flow = OtpLoginFlow(session_manager)
    _ = await flow.send_code(REGISTERED_PHONE)
    _ = flow.enter_code(OTP_CODE)

    if not await flow.verify():
        raise AssertionError
    if flow.step is not FlowStep.AUTHENTICATED:
        raise AssertionError
    if not session_manager.state.is_authenticated:
        raise AssertionError
    if fake_server.count("verify_otp") != 0 or fake_server.count("login_otp") != 1:
        raise AssertionError


@pytest.mark.asyncio
async def test_wrong_code_stays_on_code_step_with_error(
    session_manager: SessionManager,
) -> None:
    """Ensure a rejected code surfaces one message and does not advance."""
    flow = RegisterFlow(session_manager)
    _ = await flow.send_code(NEW_PHONE)

    _ = flow.enter_code("12345")
    if await flow.verify():
        raise AssertionError
    if flow.error != "Enter the 6-digit code":
        raise AssertionError

    _ = flow.enter_code("000000")
    if await flow.verify():
        raise AssertionError
    if flow.step is not FlowStep.OTP:
        raise AssertionError
    if flow.error != "Invalid or expired OTP code.":
        raise AssertionError


@pytest.mark.asyncio
async def test_login_verification_does_not_unlock_register_details(
    session_manager: SessionManager,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure a verification for one purpose never satisfies another."""
    flow = RegisterFlow(session_manager)
    _ = await flow.send_code(NEW_PHONE)
    _ = flow.enter_code(OTP_CODE)
    _ = await flow.verify()

    _ = await session_manager.verify_otp(NEW_PHONE, OTP_CODE, OtpPurpose.LOGIN)
    if session_manager.state.otp.is_verified_for(
        phone=NEW_PHONE,
        purpose=OtpPurpose.REGISTER,
    ):
        raise AssertionError

    with pytest.raises(OtpFlowStateError, match=r"requires a verified 'register' code"):
        _ = await flow.submit(
            first_name="Jane",
            last_name="Doe",
            password="secret123",  # noqa: S106
            password_confirm="secret123",  # noqa: S106
        )
    if fake_server.count("register") != 0:
        raise AssertionError


@pytest.mark.asyncio
async def test_details_step_is_unreachable_without_verification(
    session_manager: SessionManager,
) -> None:
    """Ensure submitting or entering codes on the wrong step is rejected."""
    flow = RegisterFlow(session_manager)

    with pytest.raises(OtpFlowStateError, match=r"cannot enter a code while on step 'phone'"):
        _ = flow.enter_code(OTP_CODE)
    with pytest.raises(OtpFlowStateError, match=r"cannot submit while on step 'phone'"):
        _ = await flow.submit(
            first_name="Jane",
            last_name="Doe",
            password="secret123",  # noqa: S106
            password_confirm="secret123",  # noqa: S106
        )

    _ = await flow.send_code(NEW_PHONE)
    with pytest.raises(OtpFlowStateError, match=r"cannot submit while on step 'otp'"):
        _ = await flow.submit(
            first_name="Jane",
            last_name="Doe",
            password="secret123",  # noqa: S106
            password_confirm="secret123",  # noqa: S106
        )


@pytest.mark.asyncio
async def test_use_different_number_discards_code_and_verification(
    session_manager: SessionManager,
) -> None:
    """Ensure changing number returns to the phone step with a clean slate."""
    flow = RegisterFlow(session_manager)
    _ = await flow.send_code(NEW_PHONE)
    _ = flow.enter_code(OTP_CODE)
    _ = await flow.verify()

    flow.use_different_number()

    if flow.step is not FlowStep.PHONE:
        raise AssertionError
    if flow.phone is not None or flow.code or flow.dev_code is not None:
        raise AssertionError
    if session_manager.state.otp.verified or session_manager.state.otp.sent:
        raise AssertionError


@pytest.mark.asyncio
async def test_failed_send_keeps_phone_step_and_field_error(
    session_manager: SessionManager,
) -> None:
    """Ensure a rejected phone surfaces its field message and does not advance."""
    flow = RegisterFlow(session_manager)

    if await flow.send_code("0912"):
        raise AssertionError
    if flow.step is not FlowStep.PHONE:
        raise AssertionError
    if flow.error != "Enter a valid phone number.":
        raise AssertionError
    if session_manager.state.field_errors.get("phone") != "Enter a valid phone number.":
        raise AssertionError

    flow.close()
    if session_manager.state.error is not None or flow.error is not None:
        raise AssertionError


@pytest.mark.asyncio
async def test_dev_code_is_hidden_unless_enabled(
    asgi_transport: httpx.ASGITransport,
) -> None:
    """Ensure the echoed code is only exposed when the display flag is on."""
    settings = load_settings({"ATS_API_URL": TEST_API_URL})
    manager = SessionManager.create(settings, http_transport=asgi_transport)
    try:
        flow = RegisterFlow(manager)
        _ = await flow.send_code(NEW_PHONE)
    finally:
        await manager.aclose()

    if flow.step is not FlowStep.OTP:
        raise AssertionError
    if flow.dev_code is not None:
        raise AssertionError


@pytest.mark.asyncio
async def test_blank_required_field_is_shown_as_flow_error(
    session_manager: SessionManager,
) -> None:
    """Ensure a rejected submission leaves its message on the flow."""
    async with RegisterFlow(session_manager) as flow:
        _ = await flow.send_code(NEW_PHONE)
        _ = flow.enter_code(OTP_CODE)
        _ = await flow.verify()

        with pytest.raises(FormValidationError):
            _ = await flow.submit(
                first_name="  ",
                last_name="Doe",
                password="secret123",  # noqa: S106
                password_confirm="secret123",  # noqa: S106
            )

        if flow.error != "Field 'first_name' is required.":
            raise AssertionError
        if flow.step is not FlowStep.DETAILS:
            raise AssertionError
