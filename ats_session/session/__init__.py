"""Observable session state and the manager that mutates it."""

from .error_messages import ErrorDescription, describe_error
from .manager import SessionManager
from .models import OtpSendResult, OtpState, Session, SessionState

__all__ = [
    "ErrorDescription",
    "OtpSendResult",
    "OtpState",
    "Session",
    "SessionManager",
    "SessionState",
    "describe_error",
]
