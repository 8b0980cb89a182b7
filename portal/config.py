"""
Application Configuration.

Pydantic Settings model for the job portal session core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local device store (hint cache + login audit) ---
    LOCAL_DB_PATH: str = "portal_local.db"

    # --- Role probing timeouts (seconds) ---
    # T1 bounds the full-column query, T2 the reduced-column retry.
    JOBSEEKER_TIMEOUT_S: float = 15.0
    EMPLOYER_TIMEOUT_S: float = 20.0
    ADMIN_TIMEOUT_S: float = 15.0
    ADMIN_HINTED_TIMEOUT_S: float = 10.0
    JOBSEEKER_RETRY_TIMEOUT_S: float = 10.0
    EMPLOYER_RETRY_TIMEOUT_S: float = 10.0
    ADMIN_RETRY_TIMEOUT_S: float = 8.0

    # --- Session lifecycle ---
    MISMATCH_SUPPRESSION_S: float = 3.0
    AUTH_EVENT_DRAIN_TIMEOUT_S: float = 5.0

    # --- Password reset ---
    # Page the reset email links back to; empty uses the provider default.
    PASSWORD_RESET_REDIRECT_URL: str = ""

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "portal.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line telling them the portal is running
        without a backend.
        """
        _log = logging.getLogger("portal.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL or not self.SUPABASE_ANON_KEY.get_secret_value():
            _log.warning(
                "SUPABASE_URL / SUPABASE_ANON_KEY are empty. Profile stores "
                "and the identity provider are unavailable (offline mode)."
            )

        return self

    @model_validator(mode="after")
    def _check_timeouts(self) -> "AppConfig":
        """Reject non-positive probe timeouts."""
        for name in (
            "JOBSEEKER_TIMEOUT_S",
            "EMPLOYER_TIMEOUT_S",
            "ADMIN_TIMEOUT_S",
            "ADMIN_HINTED_TIMEOUT_S",
            "JOBSEEKER_RETRY_TIMEOUT_S",
            "EMPLOYER_RETRY_TIMEOUT_S",
            "ADMIN_RETRY_TIMEOUT_S",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than zero")
        return self


# ---------------------------------------------------------------------------
# Module-level cached factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` instance.

    Uses a check-lock-check pattern so the fast path avoids the lock.
    Prefer constructor injection of ``AppConfig`` in new code; this
    factory exists for the logger and the entry point.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
