"""
Local SQLite Schema Initialization.

Defines the schema for the per-device store and provides a single
entry-point, :func:`initialize_schema`, that creates the tables
idempotently.  A single-row ``schema_version`` table tracks applied
migrations so later changes can be rolled forward without losing the
hint cache.

Tables:
    - ``role_hints``: principal id -> last resolved role.  Never cleared
      on sign-out.
    - ``login_audit``: local copy of every login attempt record.

Usage::

    from portal.schema import initialize_schema

    initialize_schema(db.sqlite, StructuredLogger(name="portal.schema"))
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from portal.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 2

_TABLE_DEFINITIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS role_hints (
        principal_id TEXT PRIMARY KEY,
        role TEXT NOT NULL
             CHECK (role IN ('jobseeker', 'employer', 'admin', 'super_admin')),
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS login_audit (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        user_id TEXT,
        user_type TEXT,
        email TEXT NOT NULL,
        login_status TEXT NOT NULL,
        failure_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_login_audit_email ON login_audit(email)",
]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()


def _get_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET
            version = excluded.version,
            applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def _create_all_tables(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    for ddl in _TABLE_DEFINITIONS:
        conn.execute(ddl)
    logger.info("Created %d local schema objects.", len(_TABLE_DEFINITIONS))


def _migrate_v1_to_v2(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """v2 added the local login audit trail."""
    conn.execute(_TABLE_DEFINITIONS[1])
    conn.execute(_TABLE_DEFINITIONS[2])
    logger.info("Migration v1→v2: created login_audit table.")


MigrationFunc = Callable[[sqlite3.Connection, StructuredLogger], None]

_MIGRATIONS: dict[int, MigrationFunc] = {
    2: _migrate_v1_to_v2,
}


def _run_incremental_migrations(
    conn: sqlite3.Connection,
    logger: StructuredLogger,
    from_version: int,
    to_version: int,
) -> None:
    """Apply registered migrations in ``(from_version, to_version]``, ascending."""
    for version in sorted(v for v in _MIGRATIONS if from_version < v <= to_version):
        logger.info("Running migration to version %d", version)
        _MIGRATIONS[version](conn, logger)


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Bring the local database up to :data:`CURRENT_SCHEMA_VERSION`.

    Fresh databases get every table at once; existing ones run the
    incremental migrations.  The upgrade and the version bump share one
    transaction: on failure everything rolls back and the next startup
    retries.  Safe to call on every startup.
    """
    _ensure_version_table(conn)
    current: int = _get_schema_version(conn)

    if current >= CURRENT_SCHEMA_VERSION:
        logger.debug("Local schema is up to date (version %d).", current)
        return

    try:
        if current == 0:
            _create_all_tables(conn, logger)
        else:
            _run_incremental_migrations(conn, logger, current, CURRENT_SCHEMA_VERSION)
        _set_schema_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            "Local schema migration failed; rolled back to version %d.", current,
        )
        raise

    logger.info("Local schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
