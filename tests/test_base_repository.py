"""
Repository tests against a mocked Supabase async client.

Only the query-builder chain is mocked; row validation, error
translation and the minimal-insert retry run for real.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from portal.database import DatabaseManager
from portal.errors import BackendError
from portal.models.profile import AdminProfile, JobseekerProfile
from portal.repositories.profile_repository import (
    AdminRepository,
    EmployerRepository,
    JobseekerRepository,
)


def _response(*rows):
    return SimpleNamespace(data=list(rows))


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def online_db(client, logger):
    manager = DatabaseManager(supabase=client, sqlite_path=":memory:", logger=logger)
    yield manager
    manager.close()


def _select_chain(client: MagicMock) -> MagicMock:
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    return chain


@pytest.mark.anyio
async def test_get_by_id_validates_row(client, online_db, logger):
    chain = _select_chain(client)
    chain.execute = AsyncMock(return_value=_response({"id": "p1", "email": "a@b.c"}))
    repo = JobseekerRepository(online_db, logger)

    profile = await repo.get_by_id("p1")

    assert isinstance(profile, JobseekerProfile)
    assert profile.id == "p1"
    client.table.assert_called_with("jobseeker_profiles")
    client.table.return_value.select.assert_called_with(JobseekerRepository.FULL_COLUMNS)
    client.table.return_value.select.return_value.eq.assert_called_with("id", "p1")


@pytest.mark.anyio
async def test_minimal_read_uses_reduced_columns(client, online_db, logger):
    _select_chain(client).execute = AsyncMock(return_value=_response())
    repo = JobseekerRepository(online_db, logger)

    assert await repo.get_by_id("p1", minimal=True) is None
    client.table.return_value.select.assert_called_with(JobseekerRepository.MINIMAL_COLUMNS)


@pytest.mark.anyio
async def test_get_by_email_normalises(client, online_db, logger):
    _select_chain(client).execute = AsyncMock(return_value=_response())
    repo = AdminRepository(online_db, logger)

    await repo.get_by_email("  Ops@Example.COM ")

    client.table.return_value.select.return_value.eq.assert_called_with(
        "email", "ops@example.com",
    )


@pytest.mark.anyio
async def test_client_errors_become_backend_error(client, online_db, logger):
    failure = Exception('relation "jobseeker_profiles" does not exist')
    _select_chain(client).execute = AsyncMock(side_effect=failure)
    repo = JobseekerRepository(online_db, logger)

    with pytest.raises(BackendError) as excinfo:
        await repo.get_by_id("p1")

    assert excinfo.value.original_error is failure


@pytest.mark.anyio
async def test_malformed_row_becomes_backend_error(client, online_db, logger):
    _select_chain(client).execute = AsyncMock(
        return_value=_response({"id": "p1", "email": "a@b.c", "verification_status": "archived"}),
    )
    repo = EmployerRepository(online_db, logger)

    with pytest.raises(BackendError) as excinfo:
        await repo.get_by_id("p1")

    assert isinstance(excinfo.value.original_error, ValidationError)


@pytest.mark.anyio
async def test_offline_mode_becomes_backend_error(db, logger):
    repo = JobseekerRepository(db, logger)

    with pytest.raises(BackendError) as excinfo:
        await repo.get_by_id("p1")

    assert "backend unavailable" in str(excinfo.value)
    assert isinstance(excinfo.value.original_error, RuntimeError)


@pytest.mark.anyio
async def test_admin_rows_map_unknown_role_to_admin(client, online_db, logger):
    _select_chain(client).execute = AsyncMock(
        return_value=_response({"id": "a1", "email": "a@b.c", "role": "owner"}),
    )
    repo = AdminRepository(online_db, logger)

    profile = await repo.get_by_id("a1")

    assert isinstance(profile, AdminProfile)
    assert profile.is_super_admin is False


@pytest.mark.anyio
async def test_create_retries_minimal_row_on_schema_error(client, online_db, logger):
    execute = AsyncMock(
        side_effect=[
            Exception("Could not find the 'skills' column in the schema cache"),
            _response({"id": "p1", "email": "a@b.c"}),
        ],
    )
    client.table.return_value.insert.return_value.execute = execute
    repo = JobseekerRepository(online_db, logger)

    profile = await repo.create("p1", "A@B.c", {"skills": ["x"], "first_name": "Jo"})

    assert profile.id == "p1"
    inserted = [call.args[0] for call in client.table.return_value.insert.call_args_list]
    assert inserted == [
        {"skills": ["x"], "first_name": "Jo", "id": "p1", "email": "a@b.c"},
        {"id": "p1", "email": "a@b.c"},
    ]


@pytest.mark.anyio
async def test_create_does_not_retry_other_errors(client, online_db, logger):
    client.table.return_value.insert.return_value.execute = AsyncMock(
        side_effect=Exception("permission denied"),
    )
    repo = JobseekerRepository(online_db, logger)

    with pytest.raises(BackendError):
        await repo.create("p1", "a@b.c")

    assert client.table.return_value.insert.call_count == 1


@pytest.mark.anyio
async def test_update_without_matching_row_returns_none(client, online_db, logger):
    chain = client.table.return_value.update.return_value.eq.return_value
    chain.execute = AsyncMock(return_value=_response())
    repo = JobseekerRepository(online_db, logger)

    assert await repo.update("p1", {"first_name": "Jo"}) is None
