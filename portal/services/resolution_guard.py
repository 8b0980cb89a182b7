"""
Reentrancy Guard.

Single-slot map of in-flight resolutions keyed by principal id.  The
mount-time session restore and the provider event listener both funnel
through :meth:`ResolutionGuard.run`, so overlapping triggers for one
principal share a single probe chain.  Different principals never block
each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional

from portal.logger import StructuredLogger
from portal.models.auth_models import ResolutionResult

ResolutionFactory = Callable[[], Awaitable[ResolutionResult]]


class ResolutionGuard:
    """One in-flight resolution task per principal id.

    ``acquire`` / ``release`` are the explicit slot operations; ``run``
    combines them with task creation and duplicate absorption.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._slots: dict[str, asyncio.Task[ResolutionResult]] = {}

    # ------------------------------------------------------------------
    # Slot operations
    # ------------------------------------------------------------------

    def acquire(self, principal_id: str, task: asyncio.Task[ResolutionResult]) -> bool:
        """Claim the slot for *principal_id*; ``False`` if already taken."""
        if principal_id in self._slots:
            return False
        self._slots[principal_id] = task
        return True

    def release(
        self,
        principal_id: str,
        task: Optional[asyncio.Task[ResolutionResult]] = None,
    ) -> None:
        """Free the slot.  With *task*, only if that task still owns it."""
        current = self._slots.get(principal_id)
        if current is None:
            return
        if task is not None and current is not task:
            return
        del self._slots[principal_id]

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._slots)

    def clear(self) -> None:
        """Forget every in-flight marker.

        Running tasks are left to finish; their results are discarded by
        the caller's staleness check.
        """
        self._slots.clear()

    # ------------------------------------------------------------------
    # Combined entry point
    # ------------------------------------------------------------------

    async def run(self, principal_id: str, factory: ResolutionFactory) -> ResolutionResult:
        """Run *factory* for *principal_id* unless a resolution is in flight.

        Duplicate callers await the existing task's result instead of
        starting a second probe chain.  The shared task is shielded so a
        cancelled waiter does not cancel the resolution for everyone.
        """
        existing = self._slots.get(principal_id)
        if existing is not None:
            self._logger.debug(
                "Resolution already in flight for %s; joining it.", principal_id,
                extra={"event": "RESOLUTION_ABSORBED", "user_id": principal_id},
            )
            return await asyncio.shield(existing)

        task: asyncio.Task[ResolutionResult] = asyncio.ensure_future(factory())
        self.acquire(principal_id, task)
        task.add_done_callback(lambda done: self.release(principal_id, done))
        return await asyncio.shield(task)
