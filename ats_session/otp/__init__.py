"""OTP-gated flows: register, OTP login and password reset."""

from .flow import (
    OTP_LENGTH,
    FlowStep,
    FormValidationError,
    OtpFlow,
    OtpFlowStateError,
    OtpLoginFlow,
    PasswordResetFlow,
    RegisterFlow,
    sanitize_otp_code,
)

__all__ = [
    "OTP_LENGTH",
    "FlowStep",
    "FormValidationError",
    "OtpFlow",
    "OtpFlowStateError",
    "OtpLoginFlow",
    "PasswordResetFlow",
    "RegisterFlow",
    "sanitize_otp_code",
]
