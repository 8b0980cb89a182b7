"""
Session State.

Provides an injectable ``SessionManager`` that owns the published
``SessionState`` for a single logical session: the authenticated
principal, its resolved profile, the provider tokens and the in-flight
resolution markers.

Usage::

    from portal.auth import SessionManager

    log = StructuredLogger(name="portal.session")
    session = SessionManager(logger=log, resolutions=ResolutionGuard(log))
    unsubscribe = session.subscribe(lambda state: print(state.phase))
    session.begin_resolution(principal)
    session.publish(principal, profile)
    user = session.get_current_user()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Optional

from portal.errors import NotAuthenticatedError
from portal.logger import StructuredLogger
from portal.models.auth_models import SessionState
from portal.models.enums import SessionPhase
from portal.models.principal import AuthSession, Principal
from portal.models.profile import Profile

if TYPE_CHECKING:
    from portal.services.resolution_guard import ResolutionGuard

SessionListener = Callable[[SessionState], None]


class SessionManager:
    """Injectable owner of the session state.

    Each instance maintains its own state, eliminating the need for
    module-level globals.  Pass a single ``SessionManager`` through the
    composition root so every component shares the same session.

    Every mutation notifies subscribers with a fresh immutable
    ``SessionState`` snapshot.
    """

    def __init__(self, logger: StructuredLogger, resolutions: ResolutionGuard) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._logger: StructuredLogger = logger
        self._phase: SessionPhase = SessionPhase.UNAUTHENTICATED
        self._principal: Optional[Principal] = None
        self._profile: Optional[Profile] = None
        self._auth_session: Optional[AuthSession] = None
        self._listeners: list[SessionListener] = []
        self.resolutions: ResolutionGuard = resolutions

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin_resolution(
        self,
        principal: Principal,
        auth_session: Optional[AuthSession] = None,
    ) -> None:
        """Enter ``RESOLVING`` for *principal*; any previous profile is dropped."""
        with self._lock:
            self._phase = SessionPhase.RESOLVING
            self._principal = principal
            self._profile = None
            if auth_session is not None:
                self._auth_session = auth_session
        self._notify()

    def publish(
        self,
        principal: Principal,
        profile: Profile,
        auth_session: Optional[AuthSession] = None,
    ) -> None:
        """Enter ``AUTHENTICATED`` with *principal* and its resolved *profile*."""
        with self._lock:
            self._phase = SessionPhase.AUTHENTICATED
            self._principal = principal
            self._profile = profile
            if auth_session is not None:
                self._auth_session = auth_session
        self._notify()

    def set_profile(self, profile: Profile) -> None:
        """Replace the profile of the authenticated principal.

        Raises:
            NotAuthenticatedError: If no principal is authenticated.
        """
        with self._lock:
            if self._phase != SessionPhase.AUTHENTICATED:
                raise NotAuthenticatedError(
                    "No user is currently authenticated. Login required."
                )
            self._profile = profile
        self._notify()

    def set_tokens(self, auth_session: AuthSession) -> None:
        """Store refreshed provider tokens; the phase is unchanged."""
        with self._lock:
            self._auth_session = auth_session

    def clear(self) -> None:
        """Remove principal, profile, tokens and in-flight markers."""
        with self._lock:
            self._phase = SessionPhase.UNAUTHENTICATED
            self._principal = None
            self._profile = None
            self._auth_session = None
            self.resolutions.clear()
        self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionState:
        with self._lock:
            return SessionState(
                phase=self._phase,
                principal=self._principal,
                profile=self._profile,
                resolution_in_flight=self.resolutions.in_flight,
            )

    @property
    def phase(self) -> SessionPhase:
        with self._lock:
            return self._phase

    @property
    def current_user(self) -> Optional[Principal]:
        with self._lock:
            return self._principal

    @property
    def user_data(self) -> Optional[Profile]:
        with self._lock:
            return self._profile

    @property
    def profile_loaded(self) -> bool:
        with self._lock:
            return self._profile is not None

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a principal is authenticated with a loaded profile."""
        with self._lock:
            return self._phase == SessionPhase.AUTHENTICATED

    @property
    def auth_session(self) -> Optional[AuthSession]:
        with self._lock:
            return self._auth_session

    @property
    def access_token(self) -> Optional[str]:
        """Return the current access token, or ``None`` if not set."""
        with self._lock:
            return self._auth_session.access_token if self._auth_session else None

    @property
    def is_token_expired(self) -> bool:
        """``True`` when the access token has expired or was never set."""
        with self._lock:
            if self._auth_session is None:
                return True
            return self._auth_session.is_expired()

    def is_active(self, principal_id: str) -> bool:
        """``True`` while *principal_id* is the session's current principal."""
        with self._lock:
            return self._principal is not None and self._principal.id == principal_id

    def get_current_user(self) -> Principal:
        """Return the authenticated principal.

        Raises:
            NotAuthenticatedError: If no user is currently authenticated.
        """
        with self._lock:
            if self._phase != SessionPhase.AUTHENTICATED or self._principal is None:
                raise NotAuthenticatedError(
                    "No user is currently authenticated. Login required."
                )
            return self._principal

    def get_profile(self) -> Profile:
        """Return the authenticated principal's profile.

        Raises:
            NotAuthenticatedError: If no user is currently authenticated.
        """
        with self._lock:
            if self._phase != SessionPhase.AUTHENTICATED or self._profile is None:
                raise NotAuthenticatedError(
                    "No user is currently authenticated. Login required."
                )
            return self._profile

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* for state snapshots; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        state = self.snapshot()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception as exc:
                self._logger.error(
                    "Session listener %r failed: %s", listener, exc, exc_info=True,
                )
