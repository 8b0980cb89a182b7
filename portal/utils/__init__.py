"""Shared utilities for the portal session core.

Convenience re-exports so consumers can import directly from
``portal.utils`` (e.g. ``from portal.utils import with_timeout``) while
full absolute imports remain supported.
"""

from portal.utils.audit import LoginAuditEvent, LoginAuditLogger, persist_login_event
from portal.utils.timeouts import with_timeout

__all__ = [
    "LoginAuditEvent",
    "LoginAuditLogger",
    "persist_login_event",
    "with_timeout",
]
