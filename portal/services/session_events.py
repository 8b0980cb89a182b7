"""
Session Event State Machine.

Consumes identity-provider lifecycle events and drives the Role Prober
into a coherent ``SessionState``.

Phases: ``UNAUTHENTICATED``, ``RESOLVING(p)``, ``AUTHENTICATED(p, profile)``
plus a time-bounded suppression overlay entered after an account-type
mismatch.

Transitions
-----------
- ``INITIAL_SESSION(None)``: no-op.
- ``INITIAL_SESSION(s)`` / ``SIGNED_IN(s)``: resolve ``s.principal``
  unless it is already authenticated with a loaded profile (dedup) or a
  resolution for it is already in flight (absorbed).  A different
  principal replaces the current one.
- ``SIGNED_OUT``: back to ``UNAUTHENTICATED``; profile and in-flight
  markers dropped, role hint kept.
- ``TOKEN_REFRESHED(s)``: tokens updated, no transition.
- While suppressed, ``SIGNED_IN`` and ``SIGNED_OUT`` are ignored.  While a
  login holds the machine, ``SIGNED_IN`` is ignored; the login drives the
  transition itself.

A resolution that completes after its principal signed out (or was
replaced) is discarded rather than applied.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from portal.auth import SessionManager
from portal.config import AppConfig
from portal.logger import StructuredLogger
from portal.models.auth_models import ResolutionResult
from portal.models.enums import SessionEvent
from portal.models.principal import AuthSession
from portal.models.profile import Profile
from portal.services.base_service import BaseService
from portal.services.hint_cache import HintCache
from portal.services.identity_provider import IdentityProvider
from portal.services.role_prober import RoleProber


class SessionEventMachine(BaseService):
    """Drives the shared ``SessionManager`` from provider events.

    Parameters
    ----------
    session:
        The session state owner; its ``resolutions`` guard provides the
        per-principal in-flight slot.
    prober:
        Role Prober used for every resolution.
    hints:
        Role hint cache consulted before probing.
    provider:
        Identity provider, used for the mount-time session check and for
        forced sign-out.
    config:
        Supplies the suppression window.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        session: SessionManager,
        prober: RoleProber,
        hints: HintCache,
        provider: IdentityProvider,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._session: SessionManager = session
        self._prober: RoleProber = prober
        self._hints: HintCache = hints
        self._provider: IdentityProvider = provider
        self._suppression_s: float = config.MISMATCH_SUPPRESSION_S
        self._suppressed_until: float = 0.0
        self._login_holds: int = 0
        # Bumped on every sign-out; resolutions started under an older
        # epoch are stale.
        self._epoch: int = 0

    # ------------------------------------------------------------------
    # Suppression overlay and login hold
    # ------------------------------------------------------------------

    def suppress(self, seconds: Optional[float] = None) -> None:
        """Ignore ``SIGNED_IN`` / ``SIGNED_OUT`` for the next *seconds*."""
        window = self._suppression_s if seconds is None else seconds
        self._suppressed_until = max(self._suppressed_until, time.monotonic() + window)
        self._logger.debug("Session events suppressed for %.1fs.", window)

    @property
    def is_suppressed(self) -> bool:
        return time.monotonic() < self._suppressed_until

    @asynccontextmanager
    async def hold_for_login(self) -> AsyncIterator[None]:
        """Ignore provider ``SIGNED_IN`` events while a login runs its checks."""
        self._login_holds += 1
        try:
            yield
        finally:
            self._login_holds -= 1

    @property
    def login_in_progress(self) -> bool:
        return self._login_holds > 0

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle(
        self,
        event: SessionEvent,
        auth_session: Optional[AuthSession] = None,
    ) -> None:
        """Apply one lifecycle event."""
        match event:
            case SessionEvent.TOKEN_REFRESHED:
                if auth_session is not None and self._session.is_active(
                    auth_session.principal_id
                ):
                    self._session.set_tokens(auth_session)
                    self._logger.debug("Tokens refreshed for %s.", auth_session.principal_id)

            case SessionEvent.SIGNED_OUT:
                if self.is_suppressed:
                    self._logger.debug("SIGNED_OUT ignored while suppressed.")
                    return
                self.sign_out_locally()

            case SessionEvent.SIGNED_IN:
                if self.is_suppressed or self.login_in_progress:
                    self._logger.debug(
                        "SIGNED_IN ignored (suppressed=%s, login in progress=%s).",
                        self.is_suppressed, self.login_in_progress,
                    )
                    return
                if auth_session is not None:
                    await self._on_session(event, auth_session)

            case SessionEvent.INITIAL_SESSION:
                if auth_session is None:
                    return
                await self._on_session(event, auth_session)

    async def sign_in(self, auth_session: AuthSession) -> Optional[Profile]:
        """Resolve and publish *auth_session* on behalf of a login.

        Returns the published profile, or ``None`` when the session ended
        before resolution completed.
        """
        await self._on_session(SessionEvent.SIGNED_IN, auth_session)
        if self._session.is_active(auth_session.principal_id):
            return self._session.user_data
        return None

    async def restore_existing_session(self) -> Optional[Profile]:
        """Mount-time check: resolve the provider's persisted session, if any.

        Runs through the same path as ``INITIAL_SESSION`` so that it and
        the event listener share one resolution per principal.
        """
        try:
            auth_session = await self._provider.get_session()
        except Exception as exc:
            self._logger.warning("Could not read existing session: %s", exc)
            return None
        if auth_session is None:
            return None
        await self.handle(SessionEvent.INITIAL_SESSION, auth_session)
        return self._session.user_data

    def sign_out_locally(self) -> None:
        """Drop principal, profile and in-flight markers; keep role hints."""
        self._epoch += 1
        had_user = self._session.current_user is not None
        self._session.clear()
        if had_user:
            self._logger.info("Session cleared.", extra={"event": "SIGNED_OUT"})

    async def reject_login(self) -> None:
        """Tear down a session rejected by the account-type guard.

        Suppression starts first so the provider's own ``SIGNED_OUT``
        (and any late ``SIGNED_IN``) is ignored.
        """
        self.suppress()
        self.sign_out_locally()
        try:
            await self._provider.sign_out()
        except Exception as exc:
            self._logger.warning("Provider sign-out after rejection failed: %s", exc)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_session(self, event: SessionEvent, auth_session: AuthSession) -> None:
        principal = auth_session.principal
        guard = self._session.resolutions

        if self._session.is_active(principal.id) and self._session.profile_loaded:
            self._session.set_tokens(auth_session)
            self._logger.debug("%s for %s already loaded; skipping.", event, principal.id)
            return

        # Re-activating a principal whose earlier resolution is still running
        # joins that task; its result then passes the staleness check.
        if not self._session.is_active(principal.id):
            self._session.begin_resolution(principal, auth_session)
        epoch = self._epoch
        await guard.run(
            principal.id, lambda: self._resolve_and_apply(auth_session, epoch),
        )

    async def _resolve_and_apply(
        self, auth_session: AuthSession, epoch: int,
    ) -> ResolutionResult:
        principal = auth_session.principal
        result = await self._prober.resolve(
            principal.id, principal.email, self._hints.get(principal.id),
        )
        self._session.resolutions.release(principal.id, asyncio.current_task())

        if epoch != self._epoch or not self._session.is_active(principal.id):
            self._logger.info(
                "Discarding resolution for %s: no longer the active principal.",
                principal.id,
                extra={"event": "RESOLUTION_DISCARDED", "user_id": principal.id},
            )
            return result

        self._session.publish(principal, result.profile, auth_session)
        return result
