"""
Authentication Guard Decorator.

Gates async service methods behind an authenticated session.  The
decorated method's owner must expose the shared ``SessionManager`` as
``self._session``.

Usage::

    from portal.session_guard import requires_session

    class AuthService:
        @requires_session
        async def refresh_profile(self) -> Profile:
            ...
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Concatenate, ParamSpec, Protocol, TypeVar

from portal.auth import SessionManager
from portal.errors import NotAuthenticatedError

P = ParamSpec("P")
R = TypeVar("R")


class HasSession(Protocol):
    _session: SessionManager


S = TypeVar("S", bound=HasSession)


def requires_session(
    method: Callable[Concatenate[S, P], Awaitable[R]],
) -> Callable[Concatenate[S, P], Awaitable[R]]:
    """Raise ``NotAuthenticatedError`` unless the session is authenticated."""

    @wraps(method)
    async def wrapper(self: S, *args: P.args, **kwargs: P.kwargs) -> R:
        if not self._session.is_authenticated:
            raise NotAuthenticatedError(
                "Authentication required. Please log in before "
                "performing this action."
            )
        return await method(self, *args, **kwargs)

    return wrapper
