"""
Timeout helpers for collaborator calls.

Every call into a provisioner, the registry or a probe is potentially slow
I/O and is issued through ``with_timeout``.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ..exceptions import CollaboratorUnavailableError, ErrorCode

T = TypeVar("T")


async def with_timeout(aw: Awaitable[T], seconds: float, operation: str) -> T:
    """
    Await ``aw`` with a per-call timeout.

    Raises:
        CollaboratorUnavailableError: If the call did not finish in time
    """
    try:
        return await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise CollaboratorUnavailableError(
            f"{operation} timed out after {seconds:g}s", cause=e, operation=operation
        ) from e


class DeadlineExceededError(CollaboratorUnavailableError):
    """The overall deadline of a workflow elapsed."""

    default_code = ErrorCode.DEADLINE_EXCEEDED
    status_code = 504
