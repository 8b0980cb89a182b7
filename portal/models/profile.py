"""
Profile Models.

A principal's account data is a tagged union discriminated on ``role``:
exactly one of ``JobseekerProfile``, ``EmployerProfile`` or
``AdminProfile`` (which covers both ``admin`` and ``super_admin``).
Rows coming back from the three profile stores are validated into the
matching variant; unknown columns are ignored.

Usage::

    from portal.models.profile import parse_profile

    profile = parse_profile({"id": "u-1", "email": "a@b.c", "role": "employer"})
    match profile:
        case EmployerProfile():
            ...
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, computed_field, field_validator

from portal.models.enums import RoleTag, VerificationStatus

__all__ = [
    "AdminProfile",
    "EmployerProfile",
    "JobseekerProfile",
    "Profile",
    "parse_profile",
    "synthesize_profile",
]


class _ProfileBase(BaseModel):
    """Fields every profile variant carries.

    ``is_fallback`` marks profiles that were synthesized without a store
    row (backend timeouts, brand-new accounts).  Such profiles are
    complete enough to route the user but may lack role-specific data
    until ``refresh_profile`` succeeds.
    """

    id: str
    email: str = ""
    is_fallback: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "frozen": True, "extra": "ignore"}

    @property
    def role_tag(self) -> RoleTag:
        return RoleTag(self.role)  # type: ignore[attr-defined]


class JobseekerProfile(_ProfileBase):
    role: Literal["jobseeker"] = "jobseeker"
    first_name: str = ""
    last_name: str = ""
    mobile_number: Optional[str] = None
    address: Optional[str] = None
    resume_url: Optional[str] = None


class EmployerProfile(_ProfileBase):
    role: Literal["employer"] = "employer"
    business_name: str = ""
    contact_person_name: Optional[str] = None
    contact_email: Optional[str] = None
    mobile_number: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING

    @field_validator("verification_status", mode="before")
    @classmethod
    def _default_pending(cls, value: object) -> object:
        return VerificationStatus.PENDING if value in (None, "") else value

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.APPROVED


class AdminProfile(_ProfileBase):
    role: Literal["admin", "super_admin"] = "admin"
    first_name: str = ""
    last_name: str = ""
    username: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_super_admin(self) -> bool:
        return self.role == RoleTag.SUPER_ADMIN


Profile = Annotated[
    Union[JobseekerProfile, EmployerProfile, AdminProfile],
    Field(discriminator="role"),
]

_PROFILE_ADAPTER: TypeAdapter[Profile] = TypeAdapter(Profile)


def parse_profile(row: dict[str, object]) -> Profile:
    """Validate a store row (which must carry ``role``) into a Profile.

    Raises:
        pydantic.ValidationError: If the row does not fit any variant.
    """
    return _PROFILE_ADAPTER.validate_python(row)


def synthesize_profile(principal_id: str, email: str, role: RoleTag) -> Profile:
    """Build a minimal ``{id, email, role}`` profile with no store row."""
    match role:
        case RoleTag.JOBSEEKER:
            return JobseekerProfile(id=principal_id, email=email, is_fallback=True)
        case RoleTag.EMPLOYER:
            return EmployerProfile(id=principal_id, email=email, is_fallback=True)
        case RoleTag.ADMIN | RoleTag.SUPER_ADMIN:
            return AdminProfile(
                id=principal_id, email=email, role=role.value, is_fallback=True,
            )
