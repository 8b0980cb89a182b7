"""
Role Prober.

Resolves an authenticated principal to exactly one role by probing the
three profile stores in a fixed priority order (jobseeker, employer,
admin) and returning the first row found.

Probe policy
------------
1. Query the store by principal id with the full column set, bounded by
   the store's first timeout (T1).
2. On ``QueryTimeout`` retry once with the reduced column set, bounded
   by the shorter retry timeout (T2).
3. If both attempts time out and the hint names this store, synthesize
   a minimal fallback profile and stop.
4. A missing row, or a ``BackendError`` (logged by the repository), falls
   through to the next store.

A non-jobseeker hint skips the jobseeker store and moves the hinted
store to the front.  Resolution never fails outright: an exhausted chain
yields the default jobseeker profile, and anything unexpected is wrapped
in ``ResolutionException``, logged, and degraded to the same default.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from portal.config import AppConfig
from portal.errors import BackendError, QueryTimeout, ResolutionException
from portal.logger import StructuredLogger
from portal.models.auth_models import ResolutionResult
from portal.models.enums import ResolutionSource, RoleTag
from portal.models.profile import Profile, synthesize_profile
from portal.repositories.profile_repository import ProfileRepository, ProfileStores
from portal.services.base_service import BaseService
from portal.services.hint_cache import HintCache
from portal.utils.timeouts import with_timeout

PRIORITY_ORDER: tuple[RoleTag, ...] = (
    RoleTag.JOBSEEKER,
    RoleTag.EMPLOYER,
    RoleTag.ADMIN,
)


# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

class StoreTimeouts(BaseModel):
    """T1 (full read) and T2 (reduced retry) for one store, in seconds."""

    full_s: float = Field(gt=0)
    retry_s: float = Field(gt=0)

    model_config = {"frozen": True}


class ProbeTimeouts(BaseModel):
    """Per-store probe budgets.

    The admin store gets a tighter T1 when an admin-family hint exists,
    since the probe is then expected to hit on the first attempt.
    """

    jobseeker: StoreTimeouts = StoreTimeouts(full_s=15.0, retry_s=10.0)
    employer: StoreTimeouts = StoreTimeouts(full_s=20.0, retry_s=10.0)
    admin: StoreTimeouts = StoreTimeouts(full_s=15.0, retry_s=8.0)
    admin_hinted_full_s: float = Field(default=10.0, gt=0)

    model_config = {"frozen": True}

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProbeTimeouts":
        return cls(
            jobseeker=StoreTimeouts(
                full_s=config.JOBSEEKER_TIMEOUT_S,
                retry_s=config.JOBSEEKER_RETRY_TIMEOUT_S,
            ),
            employer=StoreTimeouts(
                full_s=config.EMPLOYER_TIMEOUT_S,
                retry_s=config.EMPLOYER_RETRY_TIMEOUT_S,
            ),
            admin=StoreTimeouts(
                full_s=config.ADMIN_TIMEOUT_S,
                retry_s=config.ADMIN_RETRY_TIMEOUT_S,
            ),
            admin_hinted_full_s=config.ADMIN_HINTED_TIMEOUT_S,
        )

    def for_store(self, store_role: RoleTag, hint: Optional[RoleTag] = None) -> StoreTimeouts:
        """Return the budgets for the store holding *store_role*."""
        match store_role:
            case RoleTag.JOBSEEKER:
                return self.jobseeker
            case RoleTag.EMPLOYER:
                return self.employer
            case RoleTag.ADMIN | RoleTag.SUPER_ADMIN:
                if hint is not None and hint.is_admin_family:
                    return StoreTimeouts(
                        full_s=self.admin_hinted_full_s,
                        retry_s=self.admin.retry_s,
                    )
                return self.admin


def store_role(role: RoleTag) -> RoleTag:
    """Map a role onto the tag of the store that holds it."""
    return RoleTag.ADMIN if role.is_admin_family else role


def probe_order(hint: Optional[RoleTag]) -> tuple[RoleTag, ...]:
    """Stores to probe, in order, for the given hint."""
    if hint is None or hint == RoleTag.JOBSEEKER:
        return PRIORITY_ORDER
    hinted = store_role(hint)
    rest = tuple(
        role for role in PRIORITY_ORDER if role not in (hinted, RoleTag.JOBSEEKER)
    )
    return (hinted, *rest)


class _ProbeExhausted(Exception):
    """Both attempts against one store timed out."""


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class RoleProber(BaseService):
    """Chain-of-responsibility resolver over the three profile stores.

    Parameters
    ----------
    stores:
        The jobseeker, employer and admin repositories.
    hints:
        Durable role hint cache; written after every resolution.
    timeouts:
        Per-store probe budgets.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        stores: ProfileStores,
        hints: HintCache,
        timeouts: ProbeTimeouts,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._stores: ProfileStores = stores
        self._hints: HintCache = hints
        self._timeouts: ProbeTimeouts = timeouts

    async def resolve(
        self,
        principal_id: str,
        email: str,
        hint: Optional[RoleTag] = None,
    ) -> ResolutionResult:
        """Determine the principal's role and load its profile.

        Never raises (other than on task cancellation).

        Returns
        -------
        ResolutionResult
            ``success=False`` only when resolution failed internally and
            fell back to the default jobseeker profile.
        """
        try:
            result = await self._run_chain(principal_id, email, hint)
        except Exception as exc:
            error = ResolutionException(principal_id, exc)
            self._logger.error(
                "%s; defaulting to jobseeker.", error,
                exc_info=True,
                extra={"event": "RESOLUTION_FAILED", "user_id": principal_id},
            )
            return ResolutionResult(
                success=False,
                profile=synthesize_profile(principal_id, email, RoleTag.JOBSEEKER),
                role=RoleTag.JOBSEEKER,
                source=ResolutionSource.DEFAULT,
            )

        self._hints.set(principal_id, result.role)
        self._logger.info(
            "Role resolved for %s: %s (%s)", principal_id, result.role, result.source,
            extra={
                "event": "ROLE_RESOLVED",
                "user_id": principal_id,
                "role": str(result.role),
                "source": str(result.source),
            },
        )
        return result

    async def _run_chain(
        self,
        principal_id: str,
        email: str,
        hint: Optional[RoleTag],
    ) -> ResolutionResult:
        for role in probe_order(hint):
            repo = self._stores.for_role(role)
            budgets = self._timeouts.for_store(role, hint)
            try:
                profile = await self._probe(repo, principal_id, email, budgets)
            except _ProbeExhausted:
                if hint is not None and store_role(hint) == role:
                    self._logger.warning(
                        "%s store unreachable for %s; synthesizing %s profile from hint.",
                        role, principal_id, hint,
                        extra={"event": "ROLE_FALLBACK", "user_id": principal_id},
                    )
                    return ResolutionResult(
                        success=True,
                        profile=synthesize_profile(principal_id, email, hint),
                        role=hint,
                        source=ResolutionSource.SYNTHESIZED,
                    )
                self._logger.warning(
                    "%s store unreachable for %s; continuing chain.", role, principal_id,
                )
                continue

            if profile is not None:
                return ResolutionResult(
                    success=True,
                    profile=profile,
                    role=profile.role_tag,
                    source=ResolutionSource.STORE,
                )

        self._logger.info(
            "No profile row for %s in any store; defaulting to jobseeker.", principal_id,
            extra={"event": "ROLE_DEFAULTED", "user_id": principal_id},
        )
        return ResolutionResult(
            success=True,
            profile=synthesize_profile(principal_id, email, RoleTag.JOBSEEKER),
            role=RoleTag.JOBSEEKER,
            source=ResolutionSource.DEFAULT,
        )

    async def _probe(
        self,
        repo: ProfileRepository,
        principal_id: str,
        email: str,
        budgets: StoreTimeouts,
    ) -> Optional[Profile]:
        """One store: full read, then one reduced retry on timeout.

        Raises ``_ProbeExhausted`` when both attempts time out.
        """
        try:
            return await with_timeout(
                lambda: self._lookup(repo, principal_id, email, minimal=False),
                budgets.full_s,
                operation_name=f"probe {repo.TABLE}",
            )
        except QueryTimeout as exc:
            self._logger.warning("%s; retrying with reduced columns.", exc)
        except BackendError:
            return None

        try:
            return await with_timeout(
                lambda: self._lookup(repo, principal_id, email, minimal=True),
                budgets.retry_s,
                operation_name=f"probe retry {repo.TABLE}",
            )
        except QueryTimeout as exc:
            self._logger.warning("%s", exc)
            raise _ProbeExhausted(repo.TABLE) from exc
        except BackendError as exc:
            # The store answered, but with an error after a timeout: both
            # attempts have failed.
            raise _ProbeExhausted(repo.TABLE) from exc

    async def _lookup(
        self,
        repo: ProfileRepository,
        principal_id: str,
        email: str,
        *,
        minimal: bool,
    ) -> Optional[Profile]:
        profile = await repo.get_by_id(principal_id, minimal=minimal)
        if profile is None and repo.ROLE.is_admin_family and email:
            profile = await repo.get_by_email(email, minimal=minimal)
        return profile
