"""
Timeout Combinator.

A single ``with_timeout`` helper used by every profile-store query.  The
operation runs as its own task; if the deadline passes first the task is
cancelled (a query nobody is waiting for is dropped, not leaked) and
either the fallback is produced or ``QueryTimeout`` is raised.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from portal.errors import QueryTimeout

T = TypeVar("T")

__all__ = ["with_timeout"]


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    duration: float,
    fallback: Optional[Callable[[], T]] = None,
    *,
    operation_name: str = "operation",
) -> T:
    """Run *operation* with a deadline of *duration* seconds.

    Args:
        operation: Zero-argument callable returning an awaitable.  Called
            exactly once.
        duration: Deadline in seconds.
        fallback: Optional zero-argument callable whose result is returned
            when the deadline passes.  When omitted, ``QueryTimeout`` is
            raised instead.
        operation_name: Label used in the ``QueryTimeout`` message.

    Returns:
        The operation's result, or the fallback's result on timeout.

    Raises:
        QueryTimeout: On timeout when no *fallback* is given.
    """
    task: asyncio.Task[T] = asyncio.ensure_future(operation())
    try:
        async with asyncio.timeout(duration):
            return await task
    except TimeoutError:
        if fallback is not None:
            return fallback()
        raise QueryTimeout(operation_name, duration) from None
    finally:
        if not task.done():
            task.cancel()
