"""
Session Core Exception Taxonomy.

``QueryTimeout`` and ``BackendError`` are probe-level and never leave
the resolution pipeline.  ``AccountTypeMismatch`` and
``AuthCredentialError`` are fatal to a single login attempt and reach
the caller.  ``ResolutionException`` is caught at the top of the
resolver and converted into a default profile.
"""

from __future__ import annotations

from typing import Optional

from portal.models.auth_models import AuthErrorCode
from portal.models.enums import RoleTag


class PortalError(Exception):
    """Base class for every error raised by the session core."""


class QueryTimeout(PortalError):
    """A profile-store query exceeded its time budget."""

    def __init__(self, operation: str, timeout_s: float) -> None:
        self.operation: str = operation
        self.timeout_s: float = timeout_s
        super().__init__(f"{operation} timed out after {timeout_s:.2f}s")


class BackendError(PortalError):
    """A profile store or the provider answered with an error."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.original_error: Optional[Exception] = original_error
        super().__init__(message)


class AccountTypeMismatch(PortalError):
    """The principal is registered under a different role than claimed."""

    def __init__(self, actual_role: RoleTag, expected_role: Optional[RoleTag] = None) -> None:
        self.actual_role: RoleTag = actual_role
        self.expected_role: Optional[RoleTag] = expected_role
        super().__init__(
            f"This account is registered as {_role_label(actual_role)}. "
            "Please use the correct login page."
        )


class AuthCredentialError(PortalError):
    """A provider or validation failure translated into a user-facing category."""

    def __init__(self, code: AuthErrorCode, message: str) -> None:
        self.code: AuthErrorCode = code
        self.message: str = message
        super().__init__(message)


class ResolutionException(PortalError):
    """Role resolution failed in a way no probe-level policy covers."""

    def __init__(self, principal_id: str, original_error: Exception) -> None:
        self.principal_id: str = principal_id
        self.original_error: Exception = original_error
        super().__init__(f"Role resolution failed for {principal_id}: {original_error}")


class NotAuthenticatedError(PortalError, RuntimeError):
    """An operation required an authenticated session and there is none."""


def _role_label(role: RoleTag) -> str:
    match role:
        case RoleTag.JOBSEEKER:
            return "a jobseeker"
        case RoleTag.EMPLOYER:
            return "an employer"
        case RoleTag.ADMIN:
            return "an admin"
        case RoleTag.SUPER_ADMIN:
            return "a super admin"
