"""
Authentication Pipeline Models.

Pydantic models and enumerations for the contracts between the
identity provider, the role resolution pipeline, and callers of the
public session API.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, model_validator

from portal.models.enums import ResolutionSource, RoleTag, SessionPhase
from portal.models.principal import Principal
from portal.models.profile import Profile


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """User-facing categories for credential and provider failures."""

    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    RATE_LIMITED = "rate_limited"
    USER_BANNED = "user_banned"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Provider error-string mapping
# ---------------------------------------------------------------------------
# Keys are matched as lowercase substrings of the provider's error text,
# in insertion order.

PROVIDER_ERROR_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid login credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Invalid email or password. Please check your credentials and try again.",
    ),
    "invalid_credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Invalid email or password. Please check your credentials and try again.",
    ),
    "invalid_grant": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Invalid email or password. Please check your credentials and try again.",
    ),
    "email not confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please check your email and click the confirmation link before logging in.",
    ),
    "email_not_confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please check your email and click the confirmation link before logging in.",
    ),
    "too many requests": (
        AuthErrorCode.RATE_LIMITED,
        "Too many login attempts. Please wait a moment and try again.",
    ),
    "rate limit": (
        AuthErrorCode.RATE_LIMITED,
        "Too many login attempts. Please wait a moment and try again.",
    ),
    "over_request_rate_limit": (
        AuthErrorCode.RATE_LIMITED,
        "Too many login attempts. Please wait a moment and try again.",
    ),
    "user_banned": (
        AuthErrorCode.USER_BANNED,
        "Your account has been deleted. Please contact support if you "
        "believe this is an error.",
    ),
    "user already registered": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "user_already_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
}


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Role resolution
# ---------------------------------------------------------------------------

class ResolutionResult(BaseModel):
    """Outcome of resolving a principal to a role and profile.

    ``success`` is ``False`` only when resolution raised internally and
    degraded to the default jobseeker profile; a profile is always
    present either way.
    """

    success: bool
    profile: Profile
    role: RoleTag
    source: ResolutionSource

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionState(BaseModel):
    """Immutable snapshot of the published session.

    ``profile_loaded`` is true exactly when a profile is present.
    """

    phase: SessionPhase = SessionPhase.UNAUTHENTICATED
    principal: Optional[Principal] = None
    profile: Optional[Profile] = None
    resolution_in_flight: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @property
    def profile_loaded(self) -> bool:
        return self.profile is not None

    @model_validator(mode="after")
    def _check_phase(self) -> "SessionState":
        if self.phase == SessionPhase.AUTHENTICATED and (
            self.principal is None or self.profile is None
        ):
            raise ValueError("AUTHENTICATED requires a principal and a profile")
        if self.phase == SessionPhase.UNAUTHENTICATED and self.profile is not None:
            raise ValueError("UNAUTHENTICATED cannot carry a profile")
        return self
