"""
Database Abstraction Layer.

Owns the two backends the session core talks to:

- **Supabase (cloud PostgreSQL + Auth)**: the identity provider and the
  three profile stores (``jobseeker_profiles``, ``employer_profiles``,
  ``admin_profiles``).  Accessed through the async client.

- **SQLite (local)**: the durable per-device store.  Holds the role hint
  cache and the local copy of the login audit trail.  Survives sign-out
  and process restarts.

Data access is performed through repositories and services.  This module
only manages the raw *connections*; it contains no query logic.

Usage (dependency injection at startup)::

    from portal.database import DatabaseManager
    from portal.logger import StructuredLogger

    db = await DatabaseManager.connect(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="portal.database"),
    )
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Union

from supabase import AsyncClient, acreate_client

from portal.logger import StructuredLogger


class DatabaseManager:
    """Holds the optional Supabase async client and the SQLite connection.

    When no Supabase client is supplied the manager runs in offline
    mode: the ``supabase`` property raises ``RuntimeError``, which the
    repositories translate into ``BackendError`` so that role probing
    degrades to its fallback policy instead of crashing.

    Parameters
    ----------
    supabase:
        An initialised ``AsyncClient`` or ``None`` for offline mode.
    sqlite_path:
        Filesystem path for the local SQLite database, or ``":memory:"``.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        supabase: Optional[AsyncClient],
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._supabase: Optional[AsyncClient] = supabase
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    @classmethod
    async def connect(
        cls,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> "DatabaseManager":
        """Create the Supabase async client (when configured) and open SQLite."""
        client: Optional[AsyncClient] = None
        if supabase_url and supabase_key:
            try:
                client = await acreate_client(supabase_url, supabase_key)
                logger.info("Supabase async client initialized.")
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Supabase credential format error: %s. Running in offline mode.",
                    exc,
                )
            except Exception as exc:
                logger.error(
                    "Unexpected Supabase initialization failure: %s. "
                    "Running in offline mode.",
                    exc,
                    exc_info=True,
                )
        else:
            logger.warning(
                "Supabase credentials not configured; running in offline mode."
            )
        return cls(supabase=client, sqlite_path=sqlite_path, logger=logger)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> AsyncClient:
        """Return the Supabase async client.

        Raises
        ------
        RuntimeError
            If the client was not initialised (offline mode).
        """
        if self._supabase is None:
            raise RuntimeError(
                "Supabase client is not initialised. "
                "The portal is running in offline mode."
            )
        return self._supabase

    @property
    def is_online(self) -> bool:
        """``True`` when the Supabase client is available."""
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the local SQLite connection."""
        return self._sqlite_conn

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._sqlite_conn.close()
            self._logger.info("SQLite connection closed.")
        except sqlite3.ProgrammingError:
            pass

    def _connect_sqlite(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open (or create) the local SQLite database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path))
            conn.row_factory = sqlite3.Row
            if str(path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
