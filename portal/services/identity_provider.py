"""
Identity Provider Adapter.

Narrow async interface over Supabase Auth, returning the session core's
own ``Principal`` / ``AuthSession`` models instead of provider types.
The session core depends only on the ``IdentityProvider`` protocol, so
tests can substitute an in-memory fake.

Provider lifecycle callbacks are delivered synchronously by the client;
:meth:`SupabaseIdentityProvider.subscribe` bridges them onto the event
loop as tasks.  Events the session core does not model (``USER_UPDATED``,
``PASSWORD_RECOVERY``, ...) are dropped with a debug log.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Protocol

from portal.database import DatabaseManager
from portal.errors import BackendError
from portal.logger import StructuredLogger
from portal.models.enums import SessionEvent
from portal.models.principal import AuthSession, Principal

ProviderListener = Callable[[SessionEvent, Optional[AuthSession]], Awaitable[None]]


class IdentityProvider(Protocol):
    """What the session core needs from an identity provider."""

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, str],
    ) -> Principal: ...

    async def sign_out(self) -> None: ...

    async def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None,
    ) -> None: ...

    async def update_password(self, new_password: str) -> Principal: ...

    async def get_session(self) -> Optional[AuthSession]: ...

    def subscribe(self, listener: ProviderListener) -> Callable[[], None]: ...

    async def wait_idle(self) -> None: ...


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def principal_from_user(user: Any) -> Principal:
    """Build a ``Principal`` from a Supabase ``User`` object."""
    return Principal(
        id=str(user.id),
        email=(user.email or "").strip().lower(),
        email_confirmed_at=getattr(user, "email_confirmed_at", None),
    )


def auth_session_from(session: Any) -> AuthSession:
    """Build an ``AuthSession`` from a Supabase ``Session`` object."""
    return AuthSession(
        principal=principal_from_user(session.user),
        access_token=session.access_token or "",
        refresh_token=session.refresh_token or "",
        expires_at=session.expires_at,
    )


# ---------------------------------------------------------------------------
# Supabase implementation
# ---------------------------------------------------------------------------

class SupabaseIdentityProvider:
    """``IdentityProvider`` backed by ``db.supabase.auth``.

    Accessing the client in offline mode raises ``RuntimeError``; callers
    translate that into a network error.

    Parameters
    ----------
    db:
        Database manager owning the Supabase async client.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._pending: set[asyncio.Future[None]] = set()

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._db.supabase.auth.sign_in_with_password(
            {"email": email, "password": password},
        )
        if response.session is None:
            raise BackendError("Identity provider returned no session for sign-in.")
        return auth_session_from(response.session)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, str],
    ) -> Principal:
        response = await self._db.supabase.auth.sign_up(
            {"email": email, "password": password, "options": {"data": metadata}},
        )
        if response.user is None:
            raise BackendError("Identity provider returned no user for sign-up.")
        return principal_from_user(response.user)

    async def sign_out(self) -> None:
        await self._db.supabase.auth.sign_out()

    async def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None,
    ) -> None:
        options = {"redirect_to": redirect_to} if redirect_to else {}
        await self._db.supabase.auth.reset_password_for_email(email, options)

    async def update_password(self, new_password: str) -> Principal:
        response = await self._db.supabase.auth.update_user({"password": new_password})
        if response.user is None:
            raise BackendError("Identity provider returned no user for password update.")
        return principal_from_user(response.user)

    async def get_session(self) -> Optional[AuthSession]:
        session = await self._db.supabase.auth.get_session()
        return auth_session_from(session) if session is not None else None

    def subscribe(self, listener: ProviderListener) -> Callable[[], None]:
        """Forward provider lifecycle events to *listener* on this event loop.

        Must be called from within the running loop.  Returns an
        unsubscribe callable.
        """
        loop = asyncio.get_running_loop()

        def _dispatch(event: SessionEvent, session: Optional[AuthSession]) -> None:
            future = asyncio.ensure_future(listener(event, session))
            self._pending.add(future)
            future.add_done_callback(self._on_listener_done)

        def _callback(event_name: str, session: Any) -> None:
            try:
                event = SessionEvent(str(event_name))
            except ValueError:
                self._logger.debug("Ignoring provider event %s.", event_name)
                return
            converted = auth_session_from(session) if session is not None else None
            loop.call_soon_threadsafe(_dispatch, event, converted)

        subscription = self._db.supabase.auth.on_auth_state_change(_callback)
        return subscription.unsubscribe

    async def wait_idle(self) -> None:
        """Wait for every forwarded event to finish processing."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_listener_done(self, future: asyncio.Future[None]) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            self._logger.error(
                "Session event handler failed: %s", future.exception(),
                extra={"event": "SESSION_EVENT_FAILED"},
            )
