"""
Session Core Services Package.

Services depend on the Repository layer for data access and on the
shared ``SessionManager`` for session state.

The ``create_services()`` factory wires every repository and service together,
returning a typed dict that the application layer (pages / commands) can
consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from portal.auth import SessionManager
from portal.config import AppConfig
from portal.database import DatabaseManager
from portal.logger import StructuredLogger, get_logger
from portal.repositories.profile_repository import ProfileStores
from portal.services.account_guard import AccountTypeGuard
from portal.services.auth_service import AuthService
from portal.services.hint_cache import HintCache
from portal.services.identity_provider import IdentityProvider, SupabaseIdentityProvider
from portal.services.resolution_guard import ResolutionGuard
from portal.services.role_prober import ProbeTimeouts, RoleProber
from portal.services.session_events import SessionEventMachine
from portal.utils.audit import LoginAuditLogger


class ServiceContainer(TypedDict):
    """Typed container for all session-core services."""

    session: SessionManager
    stores: ProfileStores
    hint_cache: HintCache
    role_prober: RoleProber
    account_guard: AccountTypeGuard
    identity_provider: IdentityProvider
    session_events: SessionEventMachine
    login_audit: LoginAuditLogger
    auth_service: AuthService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    provider: Optional[IdentityProvider] = None,
    stores: Optional[ProfileStores] = None,
    logger: Optional[StructuredLogger] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    entry-point calls this once at startup; tests pass in-memory
    ``provider`` and ``stores`` replacements.

    Args:
        db: Initialised DatabaseManager with SQLite ready (Supabase optional).
        config: Application configuration.
        provider: Identity provider; defaults to Supabase Auth over *db*.
        stores: Profile repositories; default to the Supabase tables.
        logger: Base logger; component loggers are its children.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = logger or get_logger("portal")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    stores = stores or ProfileStores.from_database(db, logger.child("repositories"))

    # ------------------------------------------------------------------
    # 2. Leaf services
    # ------------------------------------------------------------------
    timeouts = ProbeTimeouts.from_config(config)
    hint_cache = HintCache(db=db, logger=logger.child("hints"))
    role_prober = RoleProber(
        stores=stores,
        hints=hint_cache,
        timeouts=timeouts,
        logger=logger.child("prober"),
    )
    account_guard = AccountTypeGuard(
        stores=stores,
        timeouts=timeouts,
        logger=logger.child("guard"),
    )
    provider = provider or SupabaseIdentityProvider(db=db, logger=logger.child("provider"))
    login_audit = LoginAuditLogger(db=db, logger=logger.child("audit"))

    # ------------------------------------------------------------------
    # 3. Session state and orchestration
    # ------------------------------------------------------------------
    session_logger = logger.child("session")
    session = SessionManager(
        logger=session_logger,
        resolutions=ResolutionGuard(session_logger),
    )
    session_events = SessionEventMachine(
        session=session,
        prober=role_prober,
        hints=hint_cache,
        provider=provider,
        config=config,
        logger=session_logger,
    )
    auth_service = AuthService(
        session=session,
        provider=provider,
        machine=session_events,
        guard=account_guard,
        stores=stores,
        hints=hint_cache,
        audit=login_audit,
        logger=logger.child("auth"),
        password_reset_redirect=config.PASSWORD_RESET_REDIRECT_URL or None,
    )

    return ServiceContainer(
        session=session,
        stores=stores,
        hint_cache=hint_cache,
        role_prober=role_prober,
        account_guard=account_guard,
        identity_provider=provider,
        session_events=session_events,
        login_audit=login_audit,
        auth_service=auth_service,
    )
