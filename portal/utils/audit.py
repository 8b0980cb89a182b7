"""
Login Audit Logging Utility.

Every login attempt is recorded as a Pydantic-validated
``LoginAuditEvent`` and written three ways:

1. a structured JSON log line,
2. the local SQLite ``login_audit`` table,
3. the remote ``login_log`` table, on a background task.

None of these may block or fail the login path: persistence errors are
logged and dropped, and the remote insert is fire-and-forget.  Call
:meth:`LoginAuditLogger.drain` at shutdown (or in tests) to wait for
outstanding remote writes.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from portal.database import DatabaseManager
from portal.logger import StructuredLogger
from portal.models.enums import LoginStatus, RoleTag

__all__ = ["LoginAuditEvent", "LoginAuditLogger", "persist_login_event"]

REMOTE_TABLE: str = "login_log"


class LoginAuditEvent(BaseModel):
    """Schema-validated representation of one login attempt."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
    )
    user_id: Optional[str] = None
    user_type: Optional[RoleTag] = None
    email: str
    login_status: LoginStatus
    failure_reason: Optional[str] = None

    def remote_row(self) -> dict[str, Optional[str]]:
        """Columns of the remote ``login_log`` table."""
        return {
            "user_id": self.user_id,
            "user_type": str(self.user_type) if self.user_type else None,
            "email": self.email,
            "login_status": str(self.login_status),
            "failure_reason": self.failure_reason,
        }


def persist_login_event(conn: sqlite3.Connection, event: LoginAuditEvent) -> None:
    """Write *event* to the SQLite ``login_audit`` table.

    Raises:
        sqlite3.Error: On any database failure; callers decide whether
            to swallow it.
    """
    conn.execute(
        """
        INSERT INTO login_audit
            (timestamp, user_id, user_type, email, login_status, failure_reason)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            event.timestamp,
            event.user_id,
            str(event.user_type) if event.user_type else None,
            event.email,
            str(event.login_status),
            event.failure_reason,
        ),
    )
    conn.commit()


class LoginAuditLogger:
    """Fire-and-forget recorder of login attempts.

    Parameters
    ----------
    db:
        Database manager; SQLite is always used, Supabase only when
        online.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._pending: set[asyncio.Task[None]] = set()

    def record(
        self,
        email: str,
        status: LoginStatus,
        *,
        user_id: Optional[str] = None,
        user_type: Optional[RoleTag] = None,
        failure_reason: Optional[str] = None,
    ) -> LoginAuditEvent:
        """Log and persist one attempt; the remote insert runs in the background."""
        event = LoginAuditEvent(
            user_id=user_id,
            user_type=user_type,
            email=email,
            login_status=status,
            failure_reason=failure_reason,
        )
        self._logger.info(
            "LOGIN_AUDIT: %s", json.dumps(event.model_dump(mode="json"), default=str),
            extra={"event": "LOGIN_AUDIT", "login_status": str(status)},
        )

        try:
            persist_login_event(self._db.sqlite, event)
        except sqlite3.Error as exc:
            self._logger.warning("Failed to persist login audit to SQLite: %s", exc)

        if self._db.is_online:
            task = asyncio.ensure_future(self._insert_remote(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return event

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding remote writes (bounded by *timeout*)."""
        if not self._pending:
            return
        _, pending = await asyncio.wait(list(self._pending), timeout=timeout)
        if pending:
            self._logger.warning(
                "%d login audit write(s) still pending after drain.", len(pending),
            )

    async def _insert_remote(self, event: LoginAuditEvent) -> None:
        try:
            await self._db.supabase.table(REMOTE_TABLE).insert(event.remote_row()).execute()
        except Exception as exc:
            self._logger.warning("Failed to write login audit to %s: %s", REMOTE_TABLE, exc)
