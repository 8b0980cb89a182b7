"""
Supabase identity provider adapter tests with a mocked auth client.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from portal.database import DatabaseManager
from portal.errors import BackendError
from portal.models.enums import SessionEvent
from portal.services.identity_provider import SupabaseIdentityProvider, auth_session_from


def _user(uid="5f1c", email="User@Example.com"):
    return SimpleNamespace(id=uid, email=email, email_confirmed_at=None)


def _session(user=None):
    return SimpleNamespace(
        user=user or _user(),
        access_token="access",
        refresh_token="refresh",
        expires_at=4_102_444_800,
    )


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def provider(client, logger):
    db = DatabaseManager(supabase=client, sqlite_path=":memory:", logger=logger)
    yield SupabaseIdentityProvider(db=db, logger=logger)
    db.close()


def test_auth_session_conversion_normalises_email():
    converted = auth_session_from(_session())

    assert converted.principal.id == "5f1c"
    assert converted.principal.email == "user@example.com"
    assert converted.access_token == "access"
    assert converted.expires_at == 4_102_444_800


@pytest.mark.anyio
async def test_sign_in_returns_auth_session(client, provider):
    client.auth.sign_in_with_password = AsyncMock(
        return_value=SimpleNamespace(session=_session(), user=_user()),
    )

    result = await provider.sign_in_with_password("user@example.com", "Secret#123")

    assert result.principal_id == "5f1c"
    client.auth.sign_in_with_password.assert_awaited_once_with(
        {"email": "user@example.com", "password": "Secret#123"},
    )


@pytest.mark.anyio
async def test_sign_in_without_session_is_backend_error(client, provider):
    client.auth.sign_in_with_password = AsyncMock(
        return_value=SimpleNamespace(session=None, user=None),
    )

    with pytest.raises(BackendError):
        await provider.sign_in_with_password("user@example.com", "Secret#123")


@pytest.mark.anyio
async def test_sign_up_passes_user_type_metadata(client, provider):
    client.auth.sign_up = AsyncMock(return_value=SimpleNamespace(user=_user(), session=None))

    principal = await provider.sign_up("user@example.com", "Secret#123", {"user_type": "employer"})

    assert principal.id == "5f1c"
    payload = client.auth.sign_up.await_args.args[0]
    assert payload["options"] == {"data": {"user_type": "employer"}}


@pytest.mark.anyio
async def test_reset_password_passes_redirect(client, provider):
    client.auth.reset_password_for_email = AsyncMock(return_value=None)

    await provider.reset_password_for_email("user@example.com", "https://jobs.example/reset")

    client.auth.reset_password_for_email.assert_awaited_once_with(
        "user@example.com", {"redirect_to": "https://jobs.example/reset"},
    )


@pytest.mark.anyio
async def test_reset_password_without_redirect_uses_provider_default(client, provider):
    client.auth.reset_password_for_email = AsyncMock(return_value=None)

    await provider.reset_password_for_email("user@example.com")

    client.auth.reset_password_for_email.assert_awaited_once_with("user@example.com", {})


@pytest.mark.anyio
async def test_update_password_returns_principal(client, provider):
    client.auth.update_user = AsyncMock(return_value=SimpleNamespace(user=_user()))

    principal = await provider.update_password("Changed#456")

    assert principal.id == "5f1c"
    client.auth.update_user.assert_awaited_once_with({"password": "Changed#456"})


@pytest.mark.anyio
async def test_update_password_without_user_is_backend_error(client, provider):
    client.auth.update_user = AsyncMock(return_value=SimpleNamespace(user=None))

    with pytest.raises(BackendError):
        await provider.update_password("Changed#456")


@pytest.mark.anyio
async def test_get_session_none(client, provider):
    client.auth.get_session = AsyncMock(return_value=None)

    assert await provider.get_session() is None


@pytest.mark.anyio
async def test_offline_provider_raises_runtime_error(db, logger):
    offline = SupabaseIdentityProvider(db=db, logger=logger)

    with pytest.raises(RuntimeError):
        await offline.get_session()


@pytest.mark.anyio
async def test_subscribe_forwards_known_events_onto_the_loop(client, provider):
    received = []

    async def _listener(event, session):
        received.append((event, session.principal_id if session else None))

    unsubscribe = MagicMock()
    client.auth.on_auth_state_change.return_value = SimpleNamespace(unsubscribe=unsubscribe)

    stop = provider.subscribe(_listener)
    callback = client.auth.on_auth_state_change.call_args.args[0]
    callback("SIGNED_IN", _session())
    callback("USER_UPDATED", _session())
    callback("SIGNED_OUT", None)

    await asyncio.sleep(0)
    await provider.wait_idle()

    assert received == [(SessionEvent.SIGNED_IN, "5f1c"), (SessionEvent.SIGNED_OUT, None)]
    stop()
    unsubscribe.assert_called_once_with()


@pytest.mark.anyio
async def test_failing_listener_is_logged_not_raised(client, provider):
    async def _listener(_event, _session):
        raise ValueError("handler bug")

    client.auth.on_auth_state_change.return_value = SimpleNamespace(unsubscribe=MagicMock())
    provider.subscribe(_listener)
    client.auth.on_auth_state_change.call_args.args[0]("SIGNED_OUT", None)

    await asyncio.sleep(0)
    await provider.wait_idle()
