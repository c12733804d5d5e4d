"""Finite-state machine shared by the OTP-gated register, login and reset flows."""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, ClassVar, Self

from ats_session.api.errors import AtsClientError
from ats_session.api.schemas import OtpPurpose

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from ats_session.session import SessionManager

OTP_LENGTH = 6
INCOMPLETE_CODE_MESSAGE = "Enter the 6-digit code"

_NON_DIGITS = re.compile(r"\D")

logger = logging.getLogger(__name__)


class FlowStep(StrEnum):
    """Steps of an OTP-gated flow."""

    PHONE = "phone"
    OTP = "otp"
    DETAILS = "details"
    SUCCESS = "success"
    AUTHENTICATED = "authenticated"


_TRANSITIONS: Mapping[FlowStep, frozenset[FlowStep]] = MappingProxyType(
    {
        FlowStep.PHONE: frozenset({FlowStep.OTP}),
        FlowStep.OTP: frozenset(
            {FlowStep.OTP, FlowStep.PHONE, FlowStep.DETAILS, FlowStep.AUTHENTICATED},
        ),
        FlowStep.DETAILS: frozenset(
            {FlowStep.PHONE, FlowStep.SUCCESS, FlowStep.AUTHENTICATED},
        ),
        FlowStep.SUCCESS: frozenset(),
        FlowStep.AUTHENTICATED: frozenset(),
    },
)


class FormValidationError(AtsClientError):
    """Raised when form input is rejected before any network call."""

    field: str

    def __init__(self, message: str, *, field: str) -> None:
        """Keep the offending field name next to the message."""
        super().__init__(message)
        self.field = field

    @classmethod
    def for_mismatch(cls, field: str) -> FormValidationError:
        """Build deterministic error for confirmation fields that differ."""
        return cls("Passwords do not match.", field=field)

    @classmethod
    def for_missing_field(cls, field: str) -> FormValidationError:
        """Build deterministic error for required fields left blank."""
        return cls(f"Field '{field}' is required.", field=field)


class OtpFlowStateError(AtsClientError):
    """Raised when a flow action is not allowed from the current step."""

    @classmethod
    def for_transition(
        cls,
        flow: str,
        current: FlowStep,
        target: FlowStep,
    ) -> OtpFlowStateError:
        """Build deterministic error for transitions missing from the table."""
        return cls(f"{flow} cannot move from '{current}' to '{target}'.")

    @classmethod
    def for_action(cls, flow: str, action: str, step: FlowStep) -> OtpFlowStateError:
        """Build deterministic error for actions invoked on the wrong step."""
        return cls(f"{flow} cannot {action} while on step '{step}'.")

    @classmethod
    def for_unverified(cls, flow: str, purpose: OtpPurpose) -> OtpFlowStateError:
        """Build deterministic error for details submitted without verification."""
        return cls(f"{flow} requires a verified '{purpose}' code before submitting.")


def sanitize_otp_code(raw: str) -> str:
    """Strip non-digits and cap at six characters."""
    return _NON_DIGITS.sub("", raw)[:OTP_LENGTH]


class OtpFlow:
    """Phone -> code -> flow-specific step, parameterized by `purpose`.

    Subclasses only pick the purpose, the step verification leads to, and
    the finishing call. The details step can be reached only through
    `verify()` of the same flow, and submission re-checks that the session
    manager still holds a verification for this phone and purpose.
    """

    purpose: ClassVar[OtpPurpose]
    verified_step: ClassVar[FlowStep] = FlowStep.DETAILS

    _manager: SessionManager
    _step: FlowStep
    _phone: str | None
    _code: str
    _dev_code: str | None
    _expires_in: int
    _error: str | None

    def __init__(self, manager: SessionManager) -> None:
        """Start a flow on the phone step."""
        self._manager = manager
        self._reset_fields()

    @property
    def step(self) -> FlowStep:
        """Return the current step."""
        return self._step

    @property
    def phone(self) -> str | None:
        """Return the phone the code was sent to."""
        return self._phone

    @property
    def code(self) -> str:
        """Return the sanitized code entered so far."""
        return self._code

    @property
    def dev_code(self) -> str | None:
        """Return the server-echoed code for display, when enabled."""
        return self._dev_code

    @property
    def expires_in(self) -> int:
        """Return the lifetime of the last issued code in seconds."""
        return self._expires_in

    @property
    def error(self) -> str | None:
        """Return the message of the last failed action."""
        return self._error

    async def send_code(self, phone: str) -> bool:
        """Request a code for `phone`; also used to resend from the code step."""
        self._require_step("send a code", FlowStep.PHONE, FlowStep.OTP)
        result = await self._manager.send_otp(phone, self.purpose)
        if not result.success:
            self._error = self._manager.state.error
            return False
        self._phone = phone
        self._code = ""
        self._error = None
        self._expires_in = result.expires_in
        self._dev_code = result.code if self._manager.settings.show_dev_otp else None
        self._advance(FlowStep.OTP)
        return True

    def enter_code(self, raw: str) -> str:
        """Store the sanitized form of the current input and return it."""
        self._require_step("enter a code", FlowStep.OTP)
        self._code = sanitize_otp_code(raw)
        return self._code

    async def verify(self) -> bool:
        """Check the entered code; stays on the code step on failure."""
        self._require_step("verify", FlowStep.OTP)
        phone = self._phone
        if phone is None:
            raise OtpFlowStateError.for_action(type(self).__name__, "verify", self._step)
        if len(self._code) != OTP_LENGTH:
            self._error = INCOMPLETE_CODE_MESSAGE
            return False
        if not await self._verify_code(phone, self._code):
            self._error = self._manager.state.error
            return False
        self._error = None
        self._advance(self.verified_step)
        return True

    def use_different_number(self) -> None:
        """Return to the phone step, discarding the code and verification."""
        self._require_step("change number", FlowStep.OTP, FlowStep.DETAILS)
        self._advance(FlowStep.PHONE)
        self._phone = None
        self._code = ""
        self._dev_code = None
        self._expires_in = 0
        self._error = None
        self._manager.reset_otp()

    def close(self) -> None:
        """Leave the flow, resetting transient OTP and error state."""
        self._manager.reset_otp()
        self._manager.clear_error()
        self._reset_fields()

    async def __aenter__(self) -> Self:
        """Enter the flow."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Leave the flow on context exit."""
        self.close()

    async def _verify_code(self, phone: str, code: str) -> bool:
        return await self._manager.verify_otp(phone, code, self.purpose)

    def _verified_phone(self) -> str:
        """Return the phone verified for this purpose or raise."""
        phone = self._phone
        otp = self._manager.state.otp
        if phone is None or not otp.is_verified_for(phone=phone, purpose=self.purpose):
            raise OtpFlowStateError.for_unverified(type(self).__name__, self.purpose)
        return phone

    def _finish_submission(self, succeeded: bool, target: FlowStep) -> bool:
        if not succeeded:
            self._error = self._manager.state.error
            return False
        self._error = None
        self._advance(target)
        return True

    def _reject(self, error: FormValidationError) -> FormValidationError:
        """Show `error` on the form and hand it back for raising."""
        self._error = str(error)
        return error

    def _require_step(self, action: str, *steps: FlowStep) -> None:
        if self._step not in steps:
            raise OtpFlowStateError.for_action(type(self).__name__, action, self._step)

    def _advance(self, target: FlowStep) -> None:
        current = self._step
        if target not in _TRANSITIONS[current]:
            raise OtpFlowStateError.for_transition(type(self).__name__, current, target)
        self._step = target
        if current != target:
            logger.debug(
                "OTP flow moved from %s to %s",
                current,
                target,
                extra={"flow": type(self).__name__, "purpose": str(self.purpose)},
            )

    def _reset_fields(self) -> None:
        self._step = FlowStep.PHONE
        self._phone = None
        self._code = ""
        self._dev_code = None
        self._expires_in = 0
        self._error = None


class RegisterFlow(OtpFlow):
    """Verify a phone, then create the account and sign in."""

    purpose: ClassVar[OtpPurpose] = OtpPurpose.REGISTER

    async def submit(  # noqa: PLR0913
        self,
        *,
        first_name: str,
        last_name: str,
        password: str,
        password_confirm: str,
        email: str | None = None,
    ) -> bool:
        """Register with the verified phone and code."""
        self._require_step("submit", FlowStep.DETAILS)
        required = {
            "first_name": first_name,
            "last_name": last_name,
            "password": password,
        }
        for name, value in required.items():
            if not value.strip():
                raise self._reject(FormValidationError.for_missing_field(name))
        if password != password_confirm:
            raise self._reject(FormValidationError.for_mismatch("password_confirm"))
        phone = self._verified_phone()

        succeeded = await self._manager.register(
            phone=phone,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password=password,
            password_confirm=password_confirm,
            otp_code=self._code,
            email=email.strip() if email else None,
        )
        return self._finish_submission(succeeded, FlowStep.AUTHENTICATED)


class PasswordResetFlow(OtpFlow):
    """Verify a phone, then set a new password."""

    purpose: ClassVar[OtpPurpose] = OtpPurpose.RESET_PASSWORD

    async def submit(self, *, new_password: str, new_password_confirm: str) -> bool:
        """Reset the password with the verified phone and code."""
        self._require_step("submit", FlowStep.DETAILS)
        if not new_password:
            raise self._reject(FormValidationError.for_missing_field("new_password"))
        if new_password != new_password_confirm:
            raise self._reject(
                FormValidationError.for_mismatch("new_password_confirm"),
            )
        phone = self._verified_phone()

        succeeded = await self._manager.reset_password(
            phone,
            self._code,
            new_password,
            new_password_confirm,
        )
        return self._finish_submission(succeeded, FlowStep.SUCCESS)


class OtpLoginFlow(OtpFlow):
    """Sign in with a login code; the code step is the last interactive one."""

    purpose: ClassVar[OtpPurpose] = OtpPurpose.LOGIN
    verified_step: ClassVar[FlowStep] = FlowStep.AUTHENTICATED

    async def _verify_code(self, phone: str, code: str) -> bool:
        return await self._manager.login_with_otp(phone, code)
