"""
Profile union, principal and session snapshot model tests.
"""

from __future__ import annotations

import time

import pytest
from pydantic import ValidationError

from portal.models.auth_models import SessionState
from portal.models.enums import RoleTag, SessionPhase, VerificationStatus
from portal.models.principal import AuthSession, Principal
from portal.models.profile import (
    AdminProfile,
    EmployerProfile,
    JobseekerProfile,
    parse_profile,
    synthesize_profile,
)


class TestParseProfile:
    def test_discriminates_on_role(self):
        assert isinstance(parse_profile({"id": "1", "role": "jobseeker"}), JobseekerProfile)
        assert isinstance(parse_profile({"id": "1", "role": "employer"}), EmployerProfile)
        assert isinstance(parse_profile({"id": "1", "role": "admin"}), AdminProfile)
        assert isinstance(parse_profile({"id": "1", "role": "super_admin"}), AdminProfile)

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_profile({"id": "1", "role": "recruiter"})

    def test_unknown_columns_are_ignored(self):
        profile = parse_profile({"id": "1", "role": "jobseeker", "legacy_column": 42})

        assert not hasattr(profile, "legacy_column")

    def test_employer_without_status_is_pending(self):
        profile = parse_profile({"id": "1", "role": "employer", "verification_status": None})

        assert profile.verification_status == VerificationStatus.PENDING
        assert profile.is_verified is False

    @pytest.mark.parametrize("status", ["unverified", "suspended"])
    def test_employer_workflow_states_parse(self, status):
        profile = parse_profile({"id": "1", "role": "employer", "verification_status": status})

        assert profile.verification_status == VerificationStatus(status)
        assert profile.is_verified is False

    def test_unknown_verification_status_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_profile({"id": "1", "role": "employer", "verification_status": "archived"})

    def test_super_admin_flag(self):
        assert parse_profile({"id": "1", "role": "super_admin"}).is_super_admin is True
        assert parse_profile({"id": "1", "role": "admin"}).is_super_admin is False

    def test_role_tag(self):
        assert parse_profile({"id": "1", "role": "employer"}).role_tag == RoleTag.EMPLOYER


@pytest.mark.parametrize(
    ("role", "model"),
    [
        (RoleTag.JOBSEEKER, JobseekerProfile),
        (RoleTag.EMPLOYER, EmployerProfile),
        (RoleTag.ADMIN, AdminProfile),
        (RoleTag.SUPER_ADMIN, AdminProfile),
    ],
)
def test_synthesized_profile_is_minimal_fallback(role, model):
    profile = synthesize_profile("p1", "p1@example.com", role)

    assert isinstance(profile, model)
    assert profile.id == "p1"
    assert profile.email == "p1@example.com"
    assert profile.role_tag == role
    assert profile.is_fallback is True


def test_auth_session_expiry():
    principal = Principal(id="p1", email="p1@example.com")

    assert AuthSession(principal=principal, expires_at=int(time.time()) - 10).is_expired()
    assert not AuthSession(principal=principal, expires_at=int(time.time()) + 3600).is_expired()
    assert not AuthSession(principal=principal).is_expired()


def test_principal_email_confirmation():
    assert not Principal(id="p1", email="a@b.c").email_confirmed


class TestSessionState:
    def test_authenticated_requires_profile(self):
        with pytest.raises(ValidationError):
            SessionState(
                phase=SessionPhase.AUTHENTICATED,
                principal=Principal(id="p1", email="a@b.c"),
            )

    def test_unauthenticated_cannot_carry_profile(self):
        with pytest.raises(ValidationError):
            SessionState(
                phase=SessionPhase.UNAUTHENTICATED,
                profile=synthesize_profile("p1", "a@b.c", RoleTag.JOBSEEKER),
            )

    def test_profile_loaded_tracks_profile(self):
        state = SessionState(
            phase=SessionPhase.AUTHENTICATED,
            principal=Principal(id="p1", email="a@b.c"),
            profile=synthesize_profile("p1", "a@b.c", RoleTag.EMPLOYER),
        )

        assert state.profile_loaded is True
        assert SessionState().profile_loaded is False
