"""
Data Models Package.

Re-exports the Pydantic models for short imports:
    from portal.models import Principal, Profile, RoleTag, SessionState
"""

from portal.models.auth_models import (
    AuthErrorCode,
    ResolutionResult,
    SessionState,
    ValidationResult,
)
from portal.models.enums import (
    LoginStatus,
    ResolutionSource,
    RoleTag,
    SessionEvent,
    SessionPhase,
    VerificationStatus,
)
from portal.models.principal import AuthSession, Principal
from portal.models.profile import (
    AdminProfile,
    EmployerProfile,
    JobseekerProfile,
    Profile,
    parse_profile,
    synthesize_profile,
)

__all__ = [
    "AdminProfile",
    "AuthErrorCode",
    "AuthSession",
    "EmployerProfile",
    "JobseekerProfile",
    "LoginStatus",
    "Principal",
    "Profile",
    "ResolutionResult",
    "ResolutionSource",
    "RoleTag",
    "SessionEvent",
    "SessionPhase",
    "SessionState",
    "ValidationResult",
    "VerificationStatus",
    "parse_profile",
    "synthesize_profile",
]
