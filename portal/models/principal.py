"""
Principal and Session Models.

Pydantic models for the identity issued by the identity provider after
credential verification, and for the provider session that lifecycle
events carry.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel


class Principal(BaseModel):
    """Opaque authenticated identity.

    ``id`` is the provider UUID; nothing in the session core interprets
    it beyond equality.
    """

    id: str
    email: str
    email_confirmed_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "frozen": True}

    @property
    def email_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class AuthSession(BaseModel):
    """A provider session: the principal plus its tokens.

    ``expires_at`` is a Unix timestamp in seconds, as issued by the
    provider.
    """

    principal: Principal
    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def principal_id(self) -> str:
        return self.principal.id

    @property
    def expires_at_dt(self) -> Optional[datetime]:
        if self.expires_at is None:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def is_expired(self, leeway_seconds: int = 30) -> bool:
        """``True`` when the access token has expired (or expires within
        *leeway_seconds*).  Sessions without an expiry never expire here.
        """
        expiry = self.expires_at_dt
        if expiry is None:
            return False
        return datetime.now(timezone.utc) >= expiry - timedelta(seconds=leeway_seconds)
