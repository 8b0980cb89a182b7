"""
Authentication Service.

Public session API for the rest of the portal: signup, login, logout,
profile update and refresh, plus the reactive session fields
(``current_user``, ``user_data``, ``profile_loaded``, ``subscribe``).

Sits between the UI layer and the identity provider / profile stores so
that login pages remain thin form handlers.  Failures surface as
exceptions from ``portal.errors``; provider errors are classified into a
fixed set of user-facing categories before they leave this module.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Optional

import httpx

from portal.auth import SessionListener, SessionManager
from portal.errors import (
    AccountTypeMismatch,
    AuthCredentialError,
    BackendError,
    NotAuthenticatedError,
)
from portal.logger import StructuredLogger
from portal.models.auth_models import PROVIDER_ERROR_MAP, AuthErrorCode, ValidationResult
from portal.models.enums import LoginStatus, RoleTag
from portal.models.principal import Principal
from portal.models.profile import AdminProfile, EmployerProfile, JobseekerProfile, Profile
from portal.repositories.base_repository import Row
from portal.repositories.profile_repository import ProfileRepository, ProfileStores
from portal.services.account_guard import AccountTypeGuard
from portal.services.base_service import BaseService
from portal.services.hint_cache import HintCache
from portal.services.identity_provider import IdentityProvider
from portal.services.session_events import SessionEventMachine
from portal.session_guard import requires_session
from portal.utils.audit import LoginAuditLogger


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

# Matches C0 controls (U+0000–U+001F), DEL (U+007F), and C1 controls (U+0080–U+009F).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x1f\x7f-\x9f]")

_NAME_FIELDS: dict[str, str] = {
    "first_name": "First name",
    "last_name": "Last name",
    "business_name": "Business name",
    "contact_person_name": "Contact person",
}

_IMMUTABLE_FIELDS: frozenset[str] = frozenset({"id", "role"})

_NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    RuntimeError,
    httpx.TransportError,
)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AuthService(BaseService):
    """Centralised session API.

    Receives all infrastructure dependencies via ``__init__``.

    Parameters
    ----------
    session:
        Shared session state owner.
    provider:
        Identity provider adapter.
    machine:
        Session event state machine; login and logout drive it directly.
    guard:
        Account-type guard run during login when a role is claimed.
    stores:
        The three profile repositories.
    hints:
        Role hint cache, refreshed by ``refresh_profile``.
    audit:
        Fire-and-forget login audit recorder.
    logger:
        Structured JSON logger.
    password_reset_redirect:
        Page the password-reset email links to; ``None`` for the
        provider default.
    """

    def __init__(
        self,
        session: SessionManager,
        provider: IdentityProvider,
        machine: SessionEventMachine,
        guard: AccountTypeGuard,
        stores: ProfileStores,
        hints: HintCache,
        audit: LoginAuditLogger,
        logger: StructuredLogger,
        password_reset_redirect: Optional[str] = None,
    ) -> None:
        super().__init__(logger)
        self._session: SessionManager = session
        self._provider: IdentityProvider = provider
        self._machine: SessionEventMachine = machine
        self._guard: AccountTypeGuard = guard
        self._stores: ProfileStores = stores
        self._hints: HintCache = hints
        self._audit: LoginAuditLogger = audit
        self._password_reset_redirect: Optional[str] = password_reset_redirect or None

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Validate an email address against a simplified RFC 5322 regex."""
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Email address is required.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_password(password: str) -> ValidationResult:
        """Enforce the password policy.

        Policy: minimum 8 characters, at least 1 uppercase letter,
        1 lowercase letter, 1 digit, and 1 special character.
        """
        if len(password) < 8:
            return ValidationResult(
                is_valid=False,
                error_message="Password must be at least 8 characters.",
            )
        if not re.search(r"[A-Z]", password):
            return ValidationResult(
                is_valid=False,
                error_message="Password must contain at least one uppercase letter.",
            )
        if not re.search(r"[a-z]", password):
            return ValidationResult(
                is_valid=False,
                error_message="Password must contain at least one lowercase letter.",
            )
        if not re.search(r"\d", password):
            return ValidationResult(
                is_valid=False,
                error_message="Password must contain at least one digit.",
            )
        if not re.search(r"[!@#$%^&*(),.?\":{}|<>\-_=+\[\]\\;'/`~]", password):
            return ValidationResult(
                is_valid=False,
                error_message="Password must contain at least one special character.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_name(name: str, field_label: str) -> ValidationResult:
        """Validate a name field.

        Rejects control characters (including newlines and tabs) to
        prevent log injection and display corruption.
        """
        stripped = name.strip()
        if not stripped:
            return ValidationResult(
                is_valid=False,
                error_message=f"{field_label} is required.",
            )
        if len(stripped) < 2:
            return ValidationResult(
                is_valid=False,
                error_message=f"{field_label} must be at least 2 characters.",
            )
        if _CONTROL_CHAR_RE.search(stripped):
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"{field_label} contains invalid characters. "
                    "Only printable characters are allowed."
                ),
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    # ==================================================================
    # Reactive fields
    # ==================================================================

    @property
    def current_user(self) -> Optional[Principal]:
        return self._session.current_user

    @property
    def user_data(self) -> Optional[Profile]:
        return self._session.user_data

    @property
    def profile_loaded(self) -> bool:
        return self._session.profile_loaded

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Receive a ``SessionState`` snapshot on every change."""
        return self._session.subscribe(listener)

    # ==================================================================
    # Registration
    # ==================================================================

    async def signup(
        self,
        email: str,
        password: str,
        role: RoleTag,
        attrs: Optional[Row] = None,
    ) -> Principal:
        """Create a principal and its single profile row.

        Seeds data only: the session state is not changed.

        Parameters
        ----------
        email, password:
            Credentials for the new principal.
        role:
            The account role; decides which profile store gets the row.
        attrs:
            Role-specific profile columns (names, business name, ...).

        Raises
        ------
        AuthCredentialError
            On client-side validation failure or a provider rejection.
        BackendError
            When the profile row cannot be created.
        """
        attrs = dict(attrs or {})
        self._check(self.validate_email(email))
        self._check(self.validate_password(password))
        for field, label in _NAME_FIELDS.items():
            value = attrs.get(field)
            if isinstance(value, str):
                self._check(self.validate_name(value, label))

        email = self.normalize_email(email)

        try:
            principal = await self._provider.sign_up(
                email, password, {"user_type": str(role)},
            )
        except AuthCredentialError:
            raise
        except Exception as exc:
            raise self._classify_error(exc, event="SIGNUP_FAILED") from exc

        repo = self._stores.for_role(role)
        try:
            await repo.create(principal.id, email, attrs, role=role)
        except BackendError:
            self._logger.error(
                "Principal %s created but its %s profile row was not.",
                principal.id, role,
                extra={"event": "SIGNUP_PROFILE_FAILED", "user_id": principal.id},
            )
            raise

        self._logger.info(
            "User registered: %s as %s.", email, role,
            extra={"event": "SIGNUP", "email": email, "user_id": principal.id},
        )
        return principal

    # ==================================================================
    # Login / logout
    # ==================================================================

    async def login(
        self,
        email: str,
        password: str,
        expected_role: Optional[RoleTag] = None,
    ) -> Profile:
        """Authenticate, check the claimed role, and publish the session.

        ``AUTHENTICATED`` is published only after every check passed; a
        rejected login leaves the session ``UNAUTHENTICATED``.

        Raises
        ------
        AuthCredentialError
            Validation failure, bad credentials, unconfirmed email, rate
            limiting, network trouble; ``UNKNOWN_ERROR`` when anything
            fails after the provider accepted the credentials (the
            provider session is signed out again).
        AccountTypeMismatch
            The account holds a different role than *expected_role*.  The
            provider session has been signed out.
        """
        email = self.normalize_email(email)
        self._check(self.validate_email(email))
        if not password:
            raise AuthCredentialError(AuthErrorCode.VALIDATION_ERROR, "Password is required.")

        async with self._machine.hold_for_login():
            try:
                auth_session = await self._provider.sign_in_with_password(email, password)
            except Exception as exc:
                error = self._classify_error(exc, event="LOGIN_FAILED")
                self._audit.record(
                    email,
                    LoginStatus.FAILED,
                    user_type=expected_role,
                    failure_reason=str(error.code),
                )
                raise error from exc

            principal = auth_session.principal
            try:
                if expected_role is not None:
                    await self._guard.verify(principal.id, expected_role, email)
                profile = await self._machine.sign_in(auth_session)
            except AccountTypeMismatch as exc:
                await self._machine.reject_login()
                self._audit.record(
                    email,
                    LoginStatus.BLOCKED,
                    user_id=principal.id,
                    user_type=exc.actual_role,
                    failure_reason=str(exc),
                )
                raise
            except Exception as exc:
                # Provider session is live at this point; tear it down.
                await self._machine.reject_login()
                self._audit.record(
                    email,
                    LoginStatus.FAILED,
                    user_id=principal.id,
                    user_type=expected_role,
                    failure_reason=str(AuthErrorCode.UNKNOWN_ERROR),
                )
                self._logger.error(
                    "Login for %s failed after authentication: %s", email, exc,
                    exc_info=True,
                    extra={"event": "LOGIN_FAILED", "user_id": principal.id},
                )
                raise AuthCredentialError(
                    AuthErrorCode.UNKNOWN_ERROR,
                    "An unexpected error occurred. Please try again later.",
                ) from exc

        if profile is None:
            raise NotAuthenticatedError("The session ended before the profile was loaded.")

        self._audit.record(
            email, LoginStatus.SUCCESS, user_id=principal.id, user_type=profile.role_tag,
        )
        self._logger.info(
            "User authenticated: %s (role: %s)", email, profile.role,
            extra={"event": "LOGIN", "email": email, "user_id": principal.id},
        )
        return profile

    async def logout(self) -> None:
        """End the session locally, then at the provider.

        The local logout always completes; a provider failure is only
        logged.  Role hints are kept.
        """
        principal = self._session.current_user
        self._machine.sign_out_locally()
        try:
            await self._provider.sign_out()
        except Exception as exc:
            self._logger.warning("Provider sign-out failed (local logout done): %s", exc)

        self._logger.info(
            "User logged out.",
            extra={"event": "LOGOUT", "user_id": principal.id if principal else ""},
        )

    # ==================================================================
    # Password reset
    # ==================================================================

    async def request_password_reset(self, email: str) -> None:
        """Ask the provider to email a password-reset link to *email*.

        Returns normally whether or not the address is registered, to
        prevent email enumeration.  Only network trouble and rate limiting
        are raised so the caller can ask the user to retry.
        """
        self._check(self.validate_email(email))
        email = self.normalize_email(email)

        try:
            await self._provider.reset_password_for_email(
                email, self._password_reset_redirect,
            )
        except Exception as exc:
            error = self._classify_error(exc, event="PASSWORD_RESET_FAILED")
            if error.code in (AuthErrorCode.NETWORK_ERROR, AuthErrorCode.RATE_LIMITED):
                raise error from exc
            return

        self._logger.info(
            "Password reset requested for %s.", email,
            extra={"event": "PASSWORD_RESET_REQUESTED", "email": email},
        )

    @requires_session
    async def update_password(self, new_password: str) -> None:
        """Set a new password for the signed-in principal.

        Raises
        ------
        NotAuthenticatedError
            Without an authenticated session.
        AuthCredentialError
            When *new_password* breaks the password policy or the provider
            rejects the change.
        """
        self._check(self.validate_password(new_password))
        principal = self._session.get_current_user()

        try:
            await self._provider.update_password(new_password)
        except Exception as exc:
            raise self._classify_error(exc, event="PASSWORD_UPDATE_FAILED") from exc

        self._logger.info(
            "Password updated for %s.", principal.id,
            extra={"event": "PASSWORD_UPDATED", "user_id": principal.id},
        )

    # ==================================================================
    # Profile maintenance
    # ==================================================================

    @requires_session
    async def update_profile(self, partial: Row) -> Profile:
        """Apply *partial* to the current principal's profile row.

        Raises
        ------
        NotAuthenticatedError
            Without an authenticated session.
        ValueError
            When *partial* tries to change ``id`` or ``role``.
        BackendError
            When the store rejects the update.
        """
        forbidden = _IMMUTABLE_FIELDS & partial.keys()
        if forbidden:
            raise ValueError(f"Cannot change {', '.join(sorted(forbidden))} of a profile.")

        principal = self._session.get_current_user()
        profile = self._session.get_profile()
        repo = self._store_for(profile)

        updated = await repo.update(principal.id, dict(partial))
        if updated is None:
            if not profile.is_fallback:
                raise BackendError(f"No {profile.role} profile row for {principal.id}.")
            # A synthesized profile has no row yet; the first update creates it.
            updated = await repo.create(
                principal.id, principal.email, dict(partial), role=profile.role_tag,
            )

        if not self._session.is_active(principal.id):
            raise NotAuthenticatedError("The session ended during the profile update.")
        self._session.set_profile(updated)
        self._logger.info(
            "Profile updated for %s.", principal.id,
            extra={"event": "PROFILE_UPDATED", "user_id": principal.id},
        )
        return updated

    @requires_session
    async def refresh_profile(self) -> Profile:
        """Refetch the current principal's row from its own store.

        When the store still has no row, the current profile is kept.
        """
        principal = self._session.get_current_user()
        profile = self._session.get_profile()
        repo = self._store_for(profile)

        fresh = await repo.get_by_id(principal.id)
        if fresh is None and isinstance(profile, AdminProfile):
            fresh = await repo.get_by_email(principal.email)
        if fresh is None:
            self._logger.info("No stored %s row for %s yet.", profile.role, principal.id)
            return profile

        if not self._session.is_active(principal.id):
            raise NotAuthenticatedError("The session ended during the profile refresh.")
        self._session.set_profile(fresh)
        self._hints.set(principal.id, fresh.role_tag)
        return fresh

    # ==================================================================
    # Internals
    # ==================================================================

    def _store_for(self, profile: Profile) -> ProfileRepository:
        match profile:
            case JobseekerProfile():
                return self._stores.jobseeker
            case EmployerProfile():
                return self._stores.employer
            case AdminProfile():
                return self._stores.admin

    @staticmethod
    def _check(result: ValidationResult) -> None:
        if not result.is_valid:
            raise AuthCredentialError(
                AuthErrorCode.VALIDATION_ERROR, result.error_message or "Invalid input.",
            )

    def _classify_error(self, exc: Exception, *, event: str) -> AuthCredentialError:
        """Map a provider or network exception to a user-facing category."""
        if isinstance(exc, _NETWORK_ERRORS):
            self._logger.warning(
                "Network error talking to the identity provider: %s", exc,
                extra={"event": event, "error_code": str(AuthErrorCode.NETWORK_ERROR)},
            )
            return AuthCredentialError(
                AuthErrorCode.NETWORK_ERROR,
                "Cannot reach the server. Check your internet connection.",
            )

        error_str = f"{exc} {getattr(exc, 'code', '') or ''}".lower()
        for code_key, (error_code, human_message) in PROVIDER_ERROR_MAP.items():
            if code_key in error_str:
                self._logger.warning(
                    "Auth error (%s): %s", code_key, exc,
                    extra={"event": event, "error_code": str(error_code)},
                )
                return AuthCredentialError(error_code, human_message)

        self._logger.warning(
            "Unknown auth error: %s", exc,
            extra={"event": event, "error_code": str(AuthErrorCode.UNKNOWN_ERROR)},
        )
        return AuthCredentialError(
            AuthErrorCode.UNKNOWN_ERROR,
            "An unexpected error occurred. Please try again later.",
        )
