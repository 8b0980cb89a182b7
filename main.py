"""
Job Portal Session Core Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, subscribes the session state machine to the
identity provider, restores any persisted session and optionally logs
in.  Every subsystem is wired here; there are no module-level globals.

Usage::

    python main.py
    python main.py --email user@example.com --password '...' --role employer
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import json
import sys
import traceback
from pathlib import Path
from typing import Optional

from portal.config import get_config
from portal.database import DatabaseManager
from portal.errors import AccountTypeMismatch, AuthCredentialError
from portal.logger import StructuredLogger, get_logger
from portal.models.auth_models import SessionState
from portal.models.enums import RoleTag
from portal.schema import initialize_schema
from portal.services import create_services


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Job portal session core")
    parser.add_argument("--email", help="Log in with this email address.")
    parser.add_argument("--password", help="Password for --email.")
    parser.add_argument(
        "--role",
        choices=[role.value for role in RoleTag],
        help="Role claimed at login (runs the account-type check).",
    )
    return parser.parse_args(argv)


async def main(argv: Optional[list[str]] = None) -> int:
    """Wire dependencies, restore the session and optionally log in."""
    args = _parse_args(argv)
    logger: StructuredLogger = get_logger("portal.main")
    logger.info("Starting job portal session core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = await DatabaseManager.connect(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="portal.database"),
    )

    # DatabaseManager.close() is safe to call multiple times.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite schema (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="portal.schema"))

    # ------------------------------------------------------------------
    # 4. Service container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)
    session = services["session"]
    machine = services["session_events"]
    auth_service = services["auth_service"]

    def _log_state(state: SessionState) -> None:
        logger.info(
            "Session state: %s", state.phase,
            extra={
                "event": "SESSION_STATE",
                "user_id": state.principal.id if state.principal else "",
                "role": state.profile.role if state.profile else "",
            },
        )

    unsubscribe_state = session.subscribe(_log_state)
    unsubscribe_provider = None
    if db.is_online:
        unsubscribe_provider = services["identity_provider"].subscribe(machine.handle)

    exit_code = 0
    try:
        # --------------------------------------------------------------
        # 5. Mount-time session restore
        # --------------------------------------------------------------
        if db.is_online:
            await machine.restore_existing_session()
            if session.current_user is not None and session.is_token_expired:
                logger.warning("Restored session token has expired; awaiting provider refresh.")

        # --------------------------------------------------------------
        # 6. Optional login
        # --------------------------------------------------------------
        if args.email:
            try:
                await auth_service.login(
                    args.email,
                    args.password or "",
                    RoleTag(args.role) if args.role else None,
                )
            except (AuthCredentialError, AccountTypeMismatch) as exc:
                logger.warning("Login failed: %s", exc)
                exit_code = 1

        state = session.snapshot()
        print(json.dumps(state.model_dump(mode="json"), indent=2))
    finally:
        unsubscribe_state()
        if unsubscribe_provider is not None:
            unsubscribe_provider()
        try:
            await asyncio.wait_for(
                services["identity_provider"].wait_idle(),
                timeout=config.AUTH_EVENT_DRAIN_TIMEOUT_S,
            )
        except TimeoutError:
            logger.warning("Session events still pending at shutdown.")
        await services["login_audit"].drain(timeout=config.AUTH_EVENT_DRAIN_TIMEOUT_S)
        db.close()
        logger.info("Job portal session core shut down.")

    return exit_code


def _report_fatal_error(exc: BaseException) -> None:
    """Write a fatal error and its traceback to stderr."""
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _report_fatal_error(exc)
        sys.exit(1)
