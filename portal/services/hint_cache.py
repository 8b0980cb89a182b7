"""
Role Hint Cache.

Durable per-device map from principal id to the last role that
principal resolved to.  The role prober reads it to skip stores known
not to hold a principal, cutting latency and backend load on repeat
visits.

Storage layout (``role_hints`` table)::

    role_hints
    ├── principal_id TEXT PRIMARY KEY
    ├── role         TEXT  (jobseeker | employer | admin | super_admin)
    └── updated_at   TIMESTAMP

Architecture Note
-----------------
This service accesses SQLite directly rather than through a repository
because a hint is device-local infrastructure state, not domain data.
Entries are never deleted on sign-out.  Writes are idempotent
last-write-wins upserts keyed per principal, so concurrent resolutions
need no locking.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from portal.database import DatabaseManager
from portal.logger import StructuredLogger
from portal.models.enums import RoleTag


class HintCache:
    """Get/set access to persisted role hints.

    A hint is an optimisation only: every SQLite failure is logged and
    swallowed, and reads degrade to "no hint".

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager``; its schema must include
        ``role_hints`` (see ``portal.schema``).
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger

    def get(self, principal_id: str) -> Optional[RoleTag]:
        """Return the cached role for *principal_id*, or ``None``."""
        try:
            row = self._db.sqlite.execute(
                "SELECT role FROM role_hints WHERE principal_id = ?",
                (principal_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            self._logger.warning("Could not read role hint for %s: %s", principal_id, exc)
            return None

        if row is None:
            return None

        try:
            return RoleTag(row["role"])
        except ValueError:
            self._logger.warning(
                "Ignoring unknown cached role %r for %s.", row["role"], principal_id,
            )
            return None

    def set(self, principal_id: str, role: RoleTag) -> None:
        """Record *role* as the latest known role for *principal_id*."""
        try:
            self._db.sqlite.execute(
                """
                INSERT INTO role_hints (principal_id, role)
                VALUES (?, ?)
                ON CONFLICT(principal_id) DO UPDATE SET
                    role = excluded.role,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (principal_id, str(role)),
            )
            self._db.sqlite.commit()
            self._logger.debug(
                "Role hint stored: %s -> %s", principal_id, role,
                extra={"event": "HINT_STORED"},
            )
        except sqlite3.Error as exc:
            self._logger.warning(
                "Could not persist role hint for %s (non-fatal): %s", principal_id, exc,
            )
