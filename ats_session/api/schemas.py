"""Pydantic models for the AryanTalent REST payloads consumed by the client."""

from __future__ import annotations

from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class OtpPurpose(StrEnum):
    """Flow an OTP challenge was issued for."""

    REGISTER = "register"
    LOGIN = "login"
    RESET_PASSWORD = "reset_password"  # noqa: S105


class UserRole(StrEnum):
    """Account roles recognised by the backend."""

    ADMIN = "admin"
    HR = "hr"
    RECRUITER = "recruiter"
    CANDIDATE = "candidate"


class _ApiModel(BaseModel):
    """Base model tolerating fields the client does not read."""

    model_config = ConfigDict(extra="ignore")


class User(_ApiModel):
    """Profile of the signed-in account; `phone` is the identity key."""

    id: int
    phone: str
    email: str | None = None
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    avatar: str | None = None
    role: UserRole = UserRole.CANDIDATE
    title: str = ""
    company: str = ""
    bio: str = ""
    location: str = ""
    linkedin_url: str = ""
    is_verified: bool = False
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None


class TokenPair(_ApiModel):
    """Access/refresh token pair issued on login or registration."""

    access: str = Field(min_length=1)
    refresh: str = Field(min_length=1)
    access_expires_in: int = 0
    refresh_expires_in: int = 0
    token_type: str = "Bearer"  # noqa: S105


class TokenResponse(_ApiModel):
    """Body returned by register, login and OTP login."""

    tokens: TokenPair
    user: User


class RefreshResponse(_ApiModel):
    """Body returned by the token refresh endpoint."""

    access: str = Field(min_length=1)


class SendOtpResponse(_ApiModel):
    """Body returned by send-otp; `code` is only echoed in development mode."""

    message: str = ""
    phone: str
    code: str | None = None
    expires_in: int = 0


class VerifyOtpResponse(_ApiModel):
    """Body returned by verify-otp."""

    message: str = ""
    valid: bool = False


class MessageResponse(_ApiModel):
    """Body carrying only a human readable message."""

    message: str = ""


class Page(_ApiModel, Generic[T]):
    """Envelope used by every list endpoint."""

    count: int
    next: str | None = None
    previous: str | None = None
    results: list[T]


class Category(_ApiModel):
    """Job category."""

    id: int
    name: str
    slug: str = ""
    description: str = ""
    icon: str = ""
    is_active: bool = True
    jobs_count: int | None = None


class Job(_ApiModel):
    """Public job posting."""

    id: int
    title: str
    slug: str
    category: Category | None = None
    description: str = ""
    summary: str = ""
    job_type: str = ""
    experience_level: str = ""
    location: str = ""
    is_remote: bool = False
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str = ""
    company_name: str = ""
    is_active: bool = True
    is_featured: bool = False
    posted_date: str | None = None
    deadline: str | None = None
    applications_count: int = 0
    is_saved: bool | None = None
    has_applied: bool | None = None


class SavedJob(_ApiModel):
    """Bookmark of a job by the signed-in candidate."""

    id: int
    job: Job
    saved_at: str | None = None


class Application(_ApiModel):
    """Candidate application to a job."""

    id: int
    job: int | Job
    job_title: str | None = None
    job_company: str | None = None
    cover_letter: str = ""
    portfolio_url: str = ""
    linkedin_url: str = ""
    status: str = "pending"
    match_score: float | None = None
    applied_date: str | None = None
