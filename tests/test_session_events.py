"""
Session event state machine tests.

Drives the machine directly with lifecycle events and checks the
published ``SessionState`` plus the number of store probes issued.
"""

from __future__ import annotations

import asyncio

import pytest

from portal.models.enums import RoleTag, SessionEvent, SessionPhase

pytestmark = pytest.mark.anyio


@pytest.fixture
def machine(services):
    return services["session_events"]


@pytest.fixture
def session(services):
    return services["session"]


@pytest.fixture
def jobseeker_session(provider, stores):
    principal = provider.add_account("p1", "p1@example.com")
    stores.jobseeker.add(id="p1", email="p1@example.com", first_name="Pat")
    return provider.session_for(principal)


async def test_initial_session_and_signed_in_same_tick_probe_once(
    machine, session, stores, jobseeker_session,
):
    stores.jobseeker.delay = 0.01

    await asyncio.gather(
        machine.handle(SessionEvent.INITIAL_SESSION, jobseeker_session),
        machine.handle(SessionEvent.SIGNED_IN, jobseeker_session),
    )

    assert stores.jobseeker.select_count == 1
    state = session.snapshot()
    assert state.phase == SessionPhase.AUTHENTICATED
    assert state.profile_loaded is True
    assert state.profile.first_name == "Pat"
    assert state.resolution_in_flight == frozenset()


async def test_initial_session_without_session_is_noop(machine, session, stores):
    await machine.handle(SessionEvent.INITIAL_SESSION, None)

    assert session.phase == SessionPhase.UNAUTHENTICATED
    assert stores.jobseeker.select_count == 0


async def test_redundant_signed_in_is_deduplicated(machine, stores, jobseeker_session):
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    await machine.handle(SessionEvent.INITIAL_SESSION, jobseeker_session)

    assert stores.jobseeker.select_count == 1


async def test_signed_out_clears_state_but_keeps_hint(
    machine, session, hints, jobseeker_session,
):
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    assert session.is_authenticated

    await machine.handle(SessionEvent.SIGNED_OUT)

    state = session.snapshot()
    assert state.phase == SessionPhase.UNAUTHENTICATED
    assert state.principal is None
    assert state.profile_loaded is False
    assert hints.get("p1") == RoleTag.JOBSEEKER


async def test_resolution_finishing_after_sign_out_is_discarded(
    machine, session, stores, jobseeker_session,
):
    stores.jobseeker.delay = 0.05

    pending = asyncio.ensure_future(
        machine.handle(SessionEvent.SIGNED_IN, jobseeker_session),
    )
    await asyncio.sleep(0.01)
    assert session.phase == SessionPhase.RESOLVING

    await machine.handle(SessionEvent.SIGNED_OUT)
    await pending

    assert session.phase == SessionPhase.UNAUTHENTICATED
    assert session.user_data is None


async def test_suppression_ignores_sign_in_and_sign_out(
    machine, session, stores, jobseeker_session,
):
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    machine.suppress(0.2)

    await machine.handle(SessionEvent.SIGNED_OUT)
    assert session.is_authenticated

    await asyncio.sleep(0.25)
    assert not machine.is_suppressed
    await machine.handle(SessionEvent.SIGNED_OUT)
    assert session.phase == SessionPhase.UNAUTHENTICATED


async def test_login_hold_ignores_provider_sign_in(machine, session, stores, jobseeker_session):
    async with machine.hold_for_login():
        await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)

    assert session.phase == SessionPhase.UNAUTHENTICATED
    assert stores.jobseeker.select_count == 0


async def test_token_refresh_updates_tokens_only(
    machine, session, stores, provider, jobseeker_session,
):
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    refreshed = provider.session_for(jobseeker_session.principal, token="access-2")

    await machine.handle(SessionEvent.TOKEN_REFRESHED, refreshed)

    assert session.access_token == "access-2"
    assert session.phase == SessionPhase.AUTHENTICATED
    assert stores.jobseeker.select_count == 1


async def test_sign_in_of_other_principal_replaces_current(
    machine, session, provider, stores, jobseeker_session,
):
    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    other = provider.add_account("p2", "p2@example.com")
    stores.employer.add(id="p2", email="p2@example.com", business_name="Acme")

    await machine.handle(SessionEvent.SIGNED_IN, provider.session_for(other))

    assert session.current_user.id == "p2"
    assert session.user_data.role == RoleTag.EMPLOYER


async def test_switching_back_while_first_resolution_runs_keeps_latest_principal(
    machine, session, provider, stores, jobseeker_session,
):
    other = provider.add_account("p2", "p2@example.com")
    stores.jobseeker.add(id="p2", email="p2@example.com", first_name="Sam")
    stores.jobseeker.delay = 0.02

    await asyncio.gather(
        machine.handle(SessionEvent.SIGNED_IN, jobseeker_session),
        machine.handle(SessionEvent.SIGNED_IN, provider.session_for(other)),
        machine.handle(SessionEvent.SIGNED_IN, jobseeker_session),
    )

    state = session.snapshot()
    assert state.phase == SessionPhase.AUTHENTICATED
    assert state.principal.id == "p1"
    assert state.profile.first_name == "Pat"
    assert state.resolution_in_flight == frozenset()


async def test_restore_and_listener_share_one_resolution(
    machine, session, provider, stores, jobseeker_session,
):
    provider.current = jobseeker_session
    stores.jobseeker.delay = 0.01

    profile, _ = await asyncio.gather(
        machine.restore_existing_session(),
        machine.handle(SessionEvent.INITIAL_SESSION, jobseeker_session),
    )

    assert stores.jobseeker.select_count == 1
    assert profile is not None
    assert profile.id == "p1"


async def test_restore_without_persisted_session(machine, session):
    assert await machine.restore_existing_session() is None
    assert session.phase == SessionPhase.UNAUTHENTICATED


async def test_subscribers_see_resolving_then_authenticated(
    machine, session, jobseeker_session,
):
    phases = []
    unsubscribe = session.subscribe(lambda state: phases.append(state.phase))

    await machine.handle(SessionEvent.SIGNED_IN, jobseeker_session)
    unsubscribe()
    await machine.handle(SessionEvent.SIGNED_OUT)

    assert phases == [SessionPhase.RESOLVING, SessionPhase.AUTHENTICATED]
