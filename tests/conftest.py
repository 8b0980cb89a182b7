"""
Pytest configuration and shared fixtures.

All tests run offline: the profile stores are the real repository classes
with their three Supabase helpers replaced by in-memory rows, the
identity provider is an in-memory fake, and SQLite is ``:memory:``.
Probe timeouts are shrunk to tens of milliseconds.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional

import pytest

# No log file and no backend during tests; set before any config is built.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("SUPABASE_URL", "")
os.environ.setdefault("SUPABASE_ANON_KEY", "")

from portal.config import AppConfig  # noqa: E402
from portal.database import DatabaseManager  # noqa: E402
from portal.logger import StructuredLogger  # noqa: E402
from portal.models.enums import SessionEvent  # noqa: E402
from portal.models.principal import AuthSession, Principal  # noqa: E402
from portal.repositories.base_repository import Row  # noqa: E402
from portal.repositories.profile_repository import (  # noqa: E402
    AdminRepository,
    EmployerRepository,
    JobseekerRepository,
    ProfileStores,
)
from portal.schema import initialize_schema  # noqa: E402
from portal.services import ServiceContainer, create_services  # noqa: E402
from portal.services.hint_cache import HintCache  # noqa: E402
from portal.services.identity_provider import ProviderListener  # noqa: E402
from portal.services.role_prober import ProbeTimeouts, RoleProber  # noqa: E402

FAST_TIMEOUTS = {
    "JOBSEEKER_TIMEOUT_S": 0.08,
    "EMPLOYER_TIMEOUT_S": 0.08,
    "ADMIN_TIMEOUT_S": 0.08,
    "ADMIN_HINTED_TIMEOUT_S": 0.06,
    "JOBSEEKER_RETRY_TIMEOUT_S": 0.05,
    "EMPLOYER_RETRY_TIMEOUT_S": 0.05,
    "ADMIN_RETRY_TIMEOUT_S": 0.04,
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ---------------------------------------------------------------------------
# In-memory profile stores
# ---------------------------------------------------------------------------

class InMemoryStore:
    """Replaces the Supabase round-trips of a ``ProfileRepository``.

    ``rows`` is the table, ``calls`` records every select, ``delay`` slows
    every request down, ``error`` makes selects fail, and
    ``insert_errors`` are raised (in order) by the next inserts.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)  # type: ignore[call-arg]
        self.rows: list[Row] = []
        self.calls: list[tuple[str, str, str]] = []
        self.inserted: list[Row] = []
        self.delay: float = 0.0
        self.error: Optional[Exception] = None
        self.insert_errors: list[Exception] = []

    def add(self, **row: object) -> None:
        self.rows.append(dict(row))

    @property
    def select_count(self) -> int:
        return len(self.calls)

    async def _select_one(self, column, value, columns, *, operation_name):
        self.calls.append((column, value, columns))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self._backend_error(operation_name, self.error)
        wanted = [name.strip() for name in columns.split(",")]
        for row in self.rows:
            if row.get(column) == value:
                return {name: row[name] for name in wanted if name in row}
        return None

    async def _insert(self, row, *, operation_name):
        if self.insert_errors:
            raise self._backend_error(operation_name, self.insert_errors.pop(0))
        self.inserted.append(dict(row))
        self.rows.append(dict(row))
        return dict(row)

    async def _update(self, key_column, key_value, changes, *, operation_name):
        if self.error is not None:
            raise self._backend_error(operation_name, self.error)
        for row in self.rows:
            if row.get(key_column) == key_value:
                row.update(changes)
                return dict(row)
        return None


class FakeJobseekerStore(InMemoryStore, JobseekerRepository):
    pass


class FakeEmployerStore(InMemoryStore, EmployerRepository):
    pass


class FakeAdminStore(InMemoryStore, AdminRepository):
    pass


# ---------------------------------------------------------------------------
# In-memory identity provider
# ---------------------------------------------------------------------------

class FakeIdentityProvider:
    """Accounts keyed by email; emits lifecycle events like Supabase Auth."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, Principal]] = {}
        self.current: Optional[AuthSession] = None
        self.signups: list[dict[str, str]] = []
        self.sign_out_calls: int = 0
        self.sign_in_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.reset_requests: list[tuple[str, Optional[str]]] = []
        self.reset_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self._listeners: list[ProviderListener] = []
        self._pending: set[asyncio.Future[None]] = set()

    def add_account(self, principal_id: str, email: str, password: str = "Secret#123") -> Principal:
        principal = Principal(
            id=principal_id,
            email=email,
            email_confirmed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.accounts[email] = (password, principal)
        return principal

    @staticmethod
    def session_for(principal: Principal, token: str = "access-1") -> AuthSession:
        return AuthSession(
            principal=principal,
            access_token=token,
            refresh_token="refresh-1",
            expires_at=4_102_444_800,
        )

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        if self.sign_in_error is not None:
            raise self.sign_in_error
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise Exception("Invalid login credentials")
        self.current = self.session_for(account[1])
        self.emit(SessionEvent.SIGNED_IN, self.current)
        return self.current

    async def sign_up(self, email: str, password: str, metadata: dict[str, str]) -> Principal:
        if email in self.accounts:
            raise Exception("User already registered")
        self.signups.append(dict(metadata))
        return self.add_account(f"user-{len(self.accounts) + 1}", email, password)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.current = None
        self.emit(SessionEvent.SIGNED_OUT, None)
        if self.sign_out_error is not None:
            raise self.sign_out_error

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        if self.reset_error is not None:
            raise self.reset_error
        self.reset_requests.append((email, redirect_to))

    async def update_password(self, new_password: str) -> Principal:
        if self.update_error is not None:
            raise self.update_error
        if self.current is None:
            raise Exception("Auth session missing!")
        principal = self.current.principal
        self.accounts[principal.email] = (new_password, principal)
        return principal

    async def get_session(self) -> Optional[AuthSession]:
        return self.current

    def subscribe(self, listener: ProviderListener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def emit(self, event: SessionEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            future = asyncio.ensure_future(listener(event, session))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="portal.tests", level=logging.DEBUG, log_file="")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        SUPABASE_URL="",
        LOCAL_DB_PATH=":memory:",
        LOG_FILE="",
        MISMATCH_SUPPRESSION_S=0.5,
        **FAST_TIMEOUTS,
    )


@pytest.fixture
def db(logger):
    manager = DatabaseManager(supabase=None, sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def stores(db, logger) -> ProfileStores:
    return ProfileStores(
        jobseeker=FakeJobseekerStore(db, logger),
        employer=FakeEmployerStore(db, logger),
        admin=FakeAdminStore(db, logger),
    )


@pytest.fixture
def timeouts(config) -> ProbeTimeouts:
    return ProbeTimeouts.from_config(config)


@pytest.fixture
def hints(db, logger) -> HintCache:
    return HintCache(db=db, logger=logger)


@pytest.fixture
def prober(stores, hints, timeouts, logger) -> RoleProber:
    return RoleProber(stores=stores, hints=hints, timeouts=timeouts, logger=logger)


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def services(db, config, provider, stores, logger) -> ServiceContainer:
    container = create_services(
        db=db, config=config, provider=provider, stores=stores, logger=logger,
    )
    provider.subscribe(container["session_events"].handle)
    return container

