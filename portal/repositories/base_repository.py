"""
Base Repository.

Provides shared infrastructure for the profile-store repositories:
- DatabaseManager reference (Supabase async client)
- Logger reference
- Single-row select / insert / update helpers that translate every
  client-side failure into ``BackendError``
"""

from __future__ import annotations

from typing import Optional

from supabase import AsyncClient

from portal.database import DatabaseManager
from portal.errors import BackendError
from portal.logger import StructuredLogger

Row = dict[str, object]


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> AsyncClient:
        """Returns the Supabase async client (raises ``RuntimeError`` offline)."""
        return self._db.supabase

    async def _select_one(
        self,
        column: str,
        value: str,
        columns: str,
        *,
        operation_name: str,
    ) -> Optional[Row]:
        """Fetch at most one row where ``column == value``.

        Returns:
            The row as a dict, or ``None`` when the table holds no match.

        Raises:
            BackendError: Offline mode, network failure, or a PostgREST
                error (unknown column, RLS rejection, ...).
        """
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .select(columns)
                .eq(column, value)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise self._backend_error(operation_name, exc) from exc

        rows = response.data or []
        return dict(rows[0]) if rows else None

    async def _insert(self, row: Row, *, operation_name: str) -> Row:
        """Insert *row* and return the stored representation."""
        try:
            response = await self.supabase.table(self.TABLE).insert(row).execute()
        except Exception as exc:
            raise self._backend_error(operation_name, exc) from exc

        rows = response.data or []
        return dict(rows[0]) if rows else dict(row)

    async def _update(
        self,
        key_column: str,
        key_value: str,
        changes: Row,
        *,
        operation_name: str,
    ) -> Optional[Row]:
        """Update the row matching ``key_column == key_value``.

        Returns:
            The updated row, or ``None`` when nothing matched.
        """
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .update(changes)
                .eq(key_column, key_value)
                .execute()
            )
        except Exception as exc:
            raise self._backend_error(operation_name, exc) from exc

        rows = response.data or []
        return dict(rows[0]) if rows else None

    def _backend_error(self, operation_name: str, exc: Exception) -> BackendError:
        if isinstance(exc, RuntimeError):
            message = f"{operation_name}: backend unavailable ({exc})"
        else:
            message = f"{operation_name}: {exc}"
        self._logger.warning(
            "Backend error on %s: %s", operation_name, exc,
            extra={"event": "BACKEND_ERROR", "table": self.TABLE},
        )
        return BackendError(message, original_error=exc)
