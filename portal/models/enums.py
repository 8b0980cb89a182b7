"""
Shared Enumerations for the Session Core Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so rows read
straight from the profile stores (``row["role"] == "employer"``) and
enum members interoperate without conversion.
"""

from __future__ import annotations

from enum import StrEnum


class RoleTag(StrEnum):
    """Mutually-exclusive account roles.

    A principal holds exactly one of these at a time.  ``SUPER_ADMIN``
    lives in the same store as ``ADMIN``; the two are distinguished by
    the ``role`` column of the admin row.
    """

    JOBSEEKER = "jobseeker"
    EMPLOYER = "employer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_admin_family(self) -> bool:
        """``True`` for roles stored in the admin store."""
        return self in (RoleTag.ADMIN, RoleTag.SUPER_ADMIN)


class SessionEvent(StrEnum):
    """Lifecycle events consumed from the identity provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class SessionPhase(StrEnum):
    """Top-level states of the session state machine."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    RESOLVING = "RESOLVING"
    AUTHENTICATED = "AUTHENTICATED"


class ResolutionSource(StrEnum):
    """Where a resolved profile came from."""

    STORE = "store"
    SYNTHESIZED = "synthesized"
    DEFAULT = "default"


class VerificationStatus(StrEnum):
    """Employer verification workflow states.

    ``UNVERIFIED`` employers have not submitted their documents yet;
    ``PENDING`` ones await review.  Rows with no status are treated as
    ``PENDING``.
    """

    UNVERIFIED = "unverified"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class LoginStatus(StrEnum):
    """Outcome recorded in the login audit trail."""

    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"
