"""REST client layer: transport chain, token refresh and typed endpoints."""

from .auth_api import AuthApi
from .errors import ApiError, AtsClientError, ResponseDecodeError, TransportError
from .jobs_api import JobsApi
from .pipeline import JSONBody, RequestPipeline
from .refresh import REFRESH_ENDPOINT, TokenRefreshCoordinator
from .schemas import (
    Application,
    Category,
    Job,
    MessageResponse,
    OtpPurpose,
    Page,
    RefreshResponse,
    SavedJob,
    SendOtpResponse,
    TokenPair,
    TokenResponse,
    User,
    UserRole,
    VerifyOtpResponse,
)
from .transport import HttpxTransport, PendingRequest, RefreshingTransport, Transport

__all__ = [
    "REFRESH_ENDPOINT",
    "ApiError",
    "Application",
    "AtsClientError",
    "AuthApi",
    "Category",
    "HttpxTransport",
    "JSONBody",
    "Job",
    "JobsApi",
    "MessageResponse",
    "OtpPurpose",
    "Page",
    "PendingRequest",
    "RefreshResponse",
    "RefreshingTransport",
    "RequestPipeline",
    "ResponseDecodeError",
    "SavedJob",
    "SendOtpResponse",
    "TokenPair",
    "TokenRefreshCoordinator",
    "TokenResponse",
    "Transport",
    "TransportError",
    "User",
    "UserRole",
    "VerifyOtpResponse",
]
