"""
Account-Type Guard.

Confirms that a freshly authenticated principal actually holds the role
the user claimed on the login page.  Runs after credential verification
and before the session is published, so a mismatched login never
becomes visible as an authenticated state.

Lookup order: the expected store first (admin by id, then by email),
then the remaining stores in the fixed order admin → employer →
jobseeker.  A principal with no row anywhere passes; its role is left to
the Role Prober.
"""

from __future__ import annotations

from typing import Optional

from portal.errors import AccountTypeMismatch, BackendError, QueryTimeout
from portal.logger import StructuredLogger
from portal.models.enums import RoleTag
from portal.models.profile import Profile
from portal.repositories.profile_repository import ProfileRepository, ProfileStores
from portal.services.base_service import BaseService
from portal.services.role_prober import ProbeTimeouts, store_role
from portal.utils.timeouts import with_timeout

_GUARD_ORDER: tuple[RoleTag, ...] = (
    RoleTag.ADMIN,
    RoleTag.EMPLOYER,
    RoleTag.JOBSEEKER,
)


def roles_match(actual: RoleTag, expected: RoleTag) -> bool:
    """``True`` when a row with *actual* satisfies a claim of *expected*.

    A super admin may sign in through the admin page; the reverse is a
    mismatch.
    """
    if expected == RoleTag.ADMIN:
        return actual.is_admin_family
    return actual == expected


class AccountTypeGuard(BaseService):
    """Raises ``AccountTypeMismatch`` when the claimed role is wrong.

    Parameters
    ----------
    stores:
        The three profile repositories.
    timeouts:
        Probe budgets; each guard lookup is bounded by the store's T1.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        stores: ProfileStores,
        timeouts: ProbeTimeouts,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._stores: ProfileStores = stores
        self._timeouts: ProbeTimeouts = timeouts

    async def verify(self, principal_id: str, expected_role: RoleTag, email: str) -> None:
        """Pass silently, or raise ``AccountTypeMismatch(actual_role)``."""
        expected_store = store_role(expected_role)

        profile = await self._lookup(expected_store, principal_id, email, expected_role)
        if profile is not None:
            if not roles_match(profile.role_tag, expected_role):
                self._reject(principal_id, profile.role_tag, expected_role)
            return

        for role in _GUARD_ORDER:
            if role == expected_store:
                continue
            profile = await self._lookup(role, principal_id, email, expected_role)
            if profile is not None:
                self._reject(principal_id, profile.role_tag, expected_role)

        self._logger.debug(
            "No profile row for %s in any store; account type check passes.",
            principal_id,
        )

    async def _lookup(
        self,
        role: RoleTag,
        principal_id: str,
        email: str,
        expected_role: RoleTag,
    ) -> Optional[Profile]:
        repo: ProfileRepository = self._stores.for_role(role)
        budget = self._timeouts.for_store(role, expected_role).full_s

        async def _query() -> Optional[Profile]:
            found = await repo.get_by_id(principal_id, minimal=True)
            if found is None and role.is_admin_family and email:
                found = await repo.get_by_email(email, minimal=True)
            return found

        try:
            return await with_timeout(
                _query, budget, operation_name=f"account check {repo.TABLE}",
            )
        except (QueryTimeout, BackendError) as exc:
            self._logger.warning(
                "Account type lookup in %s failed for %s; treating as no row: %s",
                repo.TABLE, principal_id, exc,
            )
            return None

    def _reject(self, principal_id: str, actual: RoleTag, expected: RoleTag) -> None:
        self._logger.warning(
            "Account type mismatch for %s: registered as %s, tried %s.",
            principal_id, actual, expected,
            extra={
                "event": "ACCOUNT_TYPE_MISMATCH",
                "user_id": principal_id,
                "actual_role": str(actual),
                "expected_role": str(expected),
            },
        )
        raise AccountTypeMismatch(actual, expected)
