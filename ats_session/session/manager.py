"""Session state store: the single source of truth for auth status."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING

from ats_session.api import (
    ApiError,
    AtsClientError,
    AuthApi,
    JobsApi,
    OtpPurpose,
    RequestPipeline,
)
from ats_session.auth import CredentialStore
from ats_session.config.settings import load_settings
from ats_session.session.error_messages import describe_error
from ats_session.session.models import OtpSendResult, OtpState, Session, SessionState

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    import httpx

    from ats_session.api import TokenResponse
    from ats_session.config.settings import ClientSettings

    StateListener = Callable[[SessionState], None]

REGISTER_FIELDS: tuple[str, ...] = (
    "phone",
    "otp_code",
    "first_name",
    "last_name",
    "email",
    "password",
    "password_confirm",
)
LOGIN_FIELDS: tuple[str, ...] = ("password", "phone")
OTP_LOGIN_FIELDS: tuple[str, ...] = ("otp_code", "phone")
RESET_PASSWORD_FIELDS: tuple[str, ...] = (
    "otp_code",
    "phone",
    "new_password",
    "new_password_confirm",
)
PROFILE_FIELDS: tuple[str, ...] = (
    "first_name",
    "last_name",
    "email",
    "title",
    "company",
    "bio",
    "location",
    "linkedin_url",
)
CHANGE_PASSWORD_FIELDS: tuple[str, ...] = ("old_password", "new_password")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Outcome:
    """State changes an operation publishes when it ends."""

    changes: dict[str, object] = field(default_factory=dict)

    def update(self, **changes: object) -> None:
        self.changes.update(changes)


class SessionManager:
    """Own one credential store and expose auth operations to the UI.

    Every mutating operation follows the same pattern: clear the error, mark
    loading, call the pipeline, then either publish the new user/auth state
    or record the error while leaving the previous state alone. Operations
    never raise API or transport errors; they return False instead. The
    loading mark is dropped even when the awaiting task is cancelled.
    """

    _pipeline: RequestPipeline
    _credentials: CredentialStore
    _auth: AuthApi
    _jobs: JobsApi
    _settings: ClientSettings
    _state: SessionState
    _listeners: list[StateListener]
    _loading_depth: int
    _token_meta: Session | None

    def __init__(
        self,
        *,
        pipeline: RequestPipeline,
        settings: ClientSettings | None = None,
    ) -> None:
        """Create a manager around a pipeline and its credential store."""
        self._pipeline = pipeline
        self._credentials = pipeline.credentials
        self._auth = AuthApi(pipeline)
        self._jobs = JobsApi(pipeline)
        self._settings = load_settings() if settings is None else settings
        self._state = SessionState()
        self._listeners = []
        self._loading_depth = 0
        self._token_meta = None

    @classmethod
    def create(
        cls,
        settings: ClientSettings | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> SessionManager:
        """Wire credential store and pipeline from settings."""
        resolved = load_settings() if settings is None else settings
        credentials = CredentialStore.open(resolved.credentials_path)
        pipeline = RequestPipeline.from_settings(
            resolved,
            credentials=credentials,
            http_transport=http_transport,
        )
        return cls(pipeline=pipeline, settings=resolved)

    @property
    def state(self) -> SessionState:
        """Return the current state snapshot."""
        return self._state

    @property
    def settings(self) -> ClientSettings:
        """Return the settings this manager was built with."""
        return self._settings

    @property
    def credentials(self) -> CredentialStore:
        """Return the credential store owned by this manager."""
        return self._credentials

    @property
    def pipeline(self) -> RequestPipeline:
        """Return the request pipeline shared by all endpoint wrappers."""
        return self._pipeline

    @property
    def jobs(self) -> JobsApi:
        """Return job board endpoints bound to this session."""
        return self._jobs

    @property
    def session(self) -> Session | None:
        """Return the current session, or None when signed out."""
        snapshot = self._credentials.snapshot
        if snapshot.access_token is None or snapshot.refresh_token is None:
            return None
        meta = self._token_meta
        return Session(
            access_token=snapshot.access_token,
            refresh_token=snapshot.refresh_token,
            access_expires_in=meta.access_expires_in if meta else 0,
            refresh_expires_in=meta.refresh_expires_in if meta else 0,
            token_type=meta.token_type if meta else "Bearer",
            user=snapshot.user,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener and return its unsubscribe callback."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def initialize(self) -> SessionState:
        """Rehydrate user and auth status optimistically from storage."""
        stored = await self._credentials.load()
        self._set_state(
            is_authenticated=stored.access_token is not None,
            user=stored.user,
        )
        return self._state

    async def aclose(self) -> None:
        """Close the HTTP client and flush the credential store."""
        await self._pipeline.aclose()
        await self._credentials.aclose()

    async def send_otp(
        self,
        phone: str,
        purpose: OtpPurpose = OtpPurpose.REGISTER,
    ) -> OtpSendResult:
        """Request an OTP; a new challenge discards any earlier verification."""
        with self._operation() as outcome:
            try:
                response = await self._auth.send_otp(phone, purpose)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=("phone",),
                    api_fallback="Failed to send OTP",
                )
                return OtpSendResult(success=False)
            outcome.update(
                otp=OtpState(sent=True, phone=phone, purpose=purpose, verified=False),
            )
            return OtpSendResult(
                success=True,
                code=response.code,
                expires_in=response.expires_in,
            )

    async def verify_otp(
        self,
        phone: str,
        code: str,
        purpose: OtpPurpose = OtpPurpose.REGISTER,
    ) -> bool:
        """Verify a code; success is recorded only for this phone and purpose.

        Any earlier verification is withdrawn before the call, so a rejected
        code never leaves a previous success in place.
        """
        with self._operation() as outcome:
            self._set_state(
                otp=OtpState(
                    sent=self._state.otp.sent,
                    phone=phone,
                    purpose=purpose,
                    verified=False,
                ),
            )
            try:
                response = await self._auth.verify_otp(phone, code, purpose)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=("code", "otp_code"),
                    api_fallback="Invalid OTP code",
                    fallback="Failed to verify OTP",
                )
                return False
            if not response.valid:
                outcome.update(error="Invalid OTP code")
                return False
            outcome.update(
                otp=OtpState(sent=True, phone=phone, purpose=purpose, verified=True),
            )
            return True

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
    ) -> bool:
        """Create an account and establish a session."""
        with self._operation() as outcome:
            try:
                response = await self._auth.register(
                    phone=phone,
                    first_name=first_name,
                    last_name=last_name,
                    password=password,
                    password_confirm=password_confirm,
                    otp_code=otp_code,
                    email=email,
                )
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=REGISTER_FIELDS,
                    api_fallback="Registration failed",
                )
                return False
            await self._establish(outcome, response)
            return True

    async def login(self, phone: str, password: str) -> bool:
        """Sign in with phone and password."""
        with self._operation() as outcome:
            try:
                response = await self._auth.login(phone, password)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=LOGIN_FIELDS,
                    api_fallback="Invalid credentials",
                    fallback="Login failed",
                )
                return False
            await self._establish(outcome, response, reset_otp=False)
            return True

    async def login_with_otp(self, phone: str, otp_code: str) -> bool:
        """Sign in with a login-purpose OTP."""
        with self._operation() as outcome:
            try:
                response = await self._auth.login_with_otp(phone, otp_code)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=OTP_LOGIN_FIELDS,
                    api_fallback="Invalid OTP",
                    fallback="Login failed",
                )
                return False
            await self._establish(outcome, response)
            return True

    async def reset_password(
        self,
        phone: str,
        otp_code: str,
        new_password: str,
        new_password_confirm: str,
    ) -> bool:
        """Set a new password with a reset-purpose OTP; no session is created."""
        with self._operation() as outcome:
            try:
                _ = await self._auth.reset_password(
                    phone=phone,
                    otp_code=otp_code,
                    new_password=new_password,
                    new_password_confirm=new_password_confirm,
                )
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=RESET_PASSWORD_FIELDS,
                    api_fallback="Failed to reset password",
                )
                return False
            outcome.update(otp=OtpState())
            return True

    async def update_profile(self, changes: Mapping[str, object]) -> bool:
        """Update profile fields and publish the returned user."""
        with self._operation() as outcome:
            try:
                user = await self._auth.update_profile(changes)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=PROFILE_FIELDS,
                    api_fallback="Failed to update profile",
                )
                return False
            await self._credentials.set_user(user)
            outcome.update(user=user)
            return True

    async def change_password(self, old_password: str, new_password: str) -> bool:
        """Change the password of the signed-in user."""
        with self._operation() as outcome:
            try:
                await self._auth.change_password(old_password, new_password)
            except AtsClientError as exc:
                self._fail(
                    outcome,
                    exc,
                    fields=CHANGE_PASSWORD_FIELDS,
                    api_fallback="Failed to change password",
                )
                return False
            return True

    async def logout(self) -> None:
        """Invalidate the refresh token server side, then always clear locally."""
        with self._operation() as outcome:
            try:
                refresh_token = self._credentials.get_refresh_token()
                if refresh_token is not None:
                    await self._auth.logout(refresh_token)
            except AtsClientError:
                logger.warning(
                    "Server-side logout failed; clearing local session anyway",
                    exc_info=True,
                )
            finally:
                outcome.update(user=None, is_authenticated=False, otp=OtpState())
                self._token_meta = None
                await self._credentials.clear_tokens()

    async def refresh_user(self) -> None:
        """Re-validate the stored session by fetching the profile.

        Only a rejection of the credentials themselves signs the user out.
        Server and network failures keep the optimistic state.
        """
        if not self._credentials.is_authenticated():
            return
        try:
            user = await self._auth.get_profile()
        except ApiError as exc:
            if exc.is_unauthorized or not self._credentials.is_authenticated():
                logger.info("Stored session rejected by server; signing out locally")
                await self._credentials.clear_tokens()
                self._token_meta = None
                self._set_state(user=None, is_authenticated=False)
                return
            logger.warning(
                "Could not re-validate session (status=%s); keeping it",
                exc.status,
            )
            return
        except AtsClientError:
            logger.warning("Could not re-validate session", exc_info=True)
            return
        await self._credentials.set_user(user)
        self._set_state(user=user, is_authenticated=True)

    def clear_error(self) -> None:
        """Clear the displayed error."""
        self._set_state(error=None, field_errors=MappingProxyType({}))

    def reset_otp(self) -> None:
        """Forget any OTP challenge and verification."""
        self._set_state(otp=OtpState())

    async def _establish(
        self,
        outcome: _Outcome,
        response: TokenResponse,
        *,
        reset_otp: bool = True,
    ) -> None:
        """Persist a freshly issued session and stage its publication."""
        session = Session.from_token_response(response)
        await self._credentials.set_session(
            access=session.access_token,
            refresh=session.refresh_token,
            user=response.user,
        )
        self._token_meta = session
        outcome.update(user=response.user, is_authenticated=True)
        if reset_otp:
            outcome.update(otp=OtpState())
        logger.info("Session established", extra={"user_id": response.user.id})

    @contextmanager
    def _operation(self) -> Iterator[_Outcome]:
        """Mark one operation in flight and publish its outcome when it ends."""
        outcome = _Outcome()
        self._loading_depth += 1
        self._set_state(
            is_loading=True,
            error=None,
            field_errors=MappingProxyType({}),
        )
        try:
            yield outcome
        finally:
            self._loading_depth = max(self._loading_depth - 1, 0)
            self._set_state(is_loading=self._loading_depth > 0, **outcome.changes)

    def _fail(
        self,
        outcome: _Outcome,
        error: AtsClientError,
        *,
        fields: tuple[str, ...],
        api_fallback: str,
        fallback: str | None = None,
    ) -> None:
        """Record an operation failure without touching the previous session."""
        description = describe_error(
            error,
            fields=fields,
            api_fallback=api_fallback,
            fallback=fallback,
        )
        logger.info(
            "Session operation failed: %s",
            description.message,
            extra={"status": getattr(error, "status", None)},
        )
        outcome.update(
            error=description.message,
            field_errors=description.field_errors,
        )
        if self._state.is_authenticated and not self._credentials.is_authenticated():
            # A failed refresh cleared the credentials underneath this call.
            self._token_meta = None
            outcome.update(user=None, is_authenticated=False)

    def _set_state(self, **changes: object) -> None:
        """Swap in a new snapshot and notify listeners."""
        self._state = replace(self._state, **changes)  # type: ignore[arg-type]
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Session state listener failed")
