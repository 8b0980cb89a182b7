"""
Profile Repositories.

One repository per profile store.  Each store holds at most one row per
principal, queryable by ``id`` or by ``email``.  Rows are validated into
the matching ``Profile`` variant before they leave this module.

Every repository exposes two column sets: ``FULL_COLUMNS`` for the normal
read and ``MINIMAL_COLUMNS`` for the cheaper retry issued after a
timeout.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from portal.database import DatabaseManager
from portal.errors import BackendError
from portal.logger import StructuredLogger
from portal.models.enums import RoleTag
from portal.models.profile import Profile, parse_profile
from portal.repositories.base_repository import BaseRepository, Row

# Substrings PostgREST uses when a payload names a column the table (or the
# schema cache) does not know about.
_SCHEMA_ERROR_MARKERS: tuple[str, ...] = ("column", "schema", "usertype")


class ProfileRepository(BaseRepository):
    """Data access for one profile store.

    Subclasses set ``TABLE``, ``ROLE`` and the two column sets.
    """

    ROLE: RoleTag = RoleTag.JOBSEEKER
    FULL_COLUMNS: str = "*"
    MINIMAL_COLUMNS: str = "id, email"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    async def get_by_id(
        self, principal_id: str, *, minimal: bool = False,
    ) -> Optional[Profile]:
        """Fetch the principal's row by primary key."""
        row = await self._select_one(
            "id",
            principal_id,
            self.MINIMAL_COLUMNS if minimal else self.FULL_COLUMNS,
            operation_name=f"get_by_id ({self.TABLE})",
        )
        if row is None:
            return None
        return self._validated(row, f"get_by_id ({self.TABLE})")

    async def get_by_email(
        self, email: str, *, minimal: bool = False,
    ) -> Optional[Profile]:
        """Fetch a row by (normalised) email address."""
        row = await self._select_one(
            "email",
            email.strip().lower(),
            self.MINIMAL_COLUMNS if minimal else self.FULL_COLUMNS,
            operation_name=f"get_by_email ({self.TABLE})",
        )
        if row is None:
            return None
        return self._validated(row, f"get_by_email ({self.TABLE})")

    async def create(
        self,
        principal_id: str,
        email: str,
        attrs: Optional[Row] = None,
        *,
        role: Optional[RoleTag] = None,
    ) -> Profile:
        """Insert the principal's single row in this store.

        If the insert is rejected because of an unknown column, the row is
        retried with only the columns every store has.

        Raises:
            BackendError: When the minimal insert fails as well, or the
                first failure was not a schema problem.
        """
        row: Row = {**(attrs or {}), **self._identity_columns(principal_id, email, role)}
        try:
            stored = await self._insert(row, operation_name=f"create ({self.TABLE})")
        except BackendError as exc:
            if not any(marker in str(exc).lower() for marker in _SCHEMA_ERROR_MARKERS):
                raise
            self._logger.info(
                "Schema mismatch inserting into %s; retrying with minimal row.",
                self.TABLE,
            )
            stored = await self._insert(
                self._identity_columns(principal_id, email, role),
                operation_name=f"create minimal ({self.TABLE})",
            )
        return self._validated(stored, f"create ({self.TABLE})")

    async def update(self, principal_id: str, changes: Row) -> Optional[Profile]:
        """Apply *changes* to the principal's row; ``None`` if it has no row."""
        row = await self._update(
            "id", principal_id, changes, operation_name=f"update ({self.TABLE})",
        )
        if row is None:
            return None
        return self._validated(row, f"update ({self.TABLE})")

    def to_profile(self, row: Row) -> Profile:
        """Validate a raw row into this store's Profile variant."""
        return parse_profile({**row, "role": str(self.ROLE)})

    def _validated(self, row: Row, operation_name: str) -> Profile:
        """``to_profile`` with malformed rows reported as ``BackendError``."""
        try:
            return self.to_profile(row)
        except ValidationError as exc:
            raise self._backend_error(operation_name, exc) from exc

    def _identity_columns(
        self, principal_id: str, email: str, role: Optional[RoleTag],
    ) -> Row:
        return {"id": principal_id, "email": email.strip().lower()}


class JobseekerRepository(ProfileRepository):
    TABLE = "jobseeker_profiles"
    ROLE = RoleTag.JOBSEEKER
    FULL_COLUMNS = (
        "id, email, first_name, last_name, mobile_number, address, "
        "resume_url, created_at, updated_at"
    )
    MINIMAL_COLUMNS = "id, email, first_name, last_name"


class EmployerRepository(ProfileRepository):
    TABLE = "employer_profiles"
    ROLE = RoleTag.EMPLOYER
    FULL_COLUMNS = (
        "id, email, business_name, contact_person_name, contact_email, "
        "mobile_number, verification_status, created_at, updated_at"
    )
    MINIMAL_COLUMNS = "id, email, business_name, verification_status"


class AdminRepository(ProfileRepository):
    """The admin store holds both ``admin`` and ``super_admin`` rows.

    The row's own ``role`` column decides between the two; anything else
    in that column is read as plain ``admin``.
    """

    TABLE = "admin_profiles"
    ROLE = RoleTag.ADMIN
    FULL_COLUMNS = (
        "id, email, first_name, last_name, username, role, created_at, updated_at"
    )
    MINIMAL_COLUMNS = "id, email, role"

    def to_profile(self, row: Row) -> Profile:
        role = row.get("role")
        stored_role = RoleTag.SUPER_ADMIN if role == RoleTag.SUPER_ADMIN else RoleTag.ADMIN
        return parse_profile({**row, "role": str(stored_role)})

    def _identity_columns(
        self, principal_id: str, email: str, role: Optional[RoleTag],
    ) -> Row:
        columns = super()._identity_columns(principal_id, email, role)
        columns["role"] = str(role if role is not None else RoleTag.ADMIN)
        return columns


class ProfileStores:
    """The three profile stores, addressable by role.

    ``for_role`` maps ``super_admin`` onto the admin store.
    """

    def __init__(
        self,
        jobseeker: ProfileRepository,
        employer: ProfileRepository,
        admin: ProfileRepository,
    ) -> None:
        self.jobseeker: ProfileRepository = jobseeker
        self.employer: ProfileRepository = employer
        self.admin: ProfileRepository = admin

    @classmethod
    def from_database(cls, db: DatabaseManager, logger: StructuredLogger) -> "ProfileStores":
        return cls(
            jobseeker=JobseekerRepository(db=db, logger=logger),
            employer=EmployerRepository(db=db, logger=logger),
            admin=AdminRepository(db=db, logger=logger),
        )

    def for_role(self, role: RoleTag) -> ProfileRepository:
        match role:
            case RoleTag.JOBSEEKER:
                return self.jobseeker
            case RoleTag.EMPLOYER:
                return self.employer
            case RoleTag.ADMIN | RoleTag.SUPER_ADMIN:
                return self.admin
