"""Structured fan-out helper shared by the writer and the orchestrator."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterable


async def run_all(awaitables: Iterable[Awaitable[object]]) -> None:
    """Run ``awaitables`` concurrently and return once every one has finished.

    The first failure cancels the remaining tasks, waits for them to unwind
    and is then raised as-is rather than wrapped in an ``ExceptionGroup``.
    """

    try:
        async with asyncio.TaskGroup() as group:
            for awaitable in awaitables:
                group.create_task(awaitable)
    except ExceptionGroup as failures:
        raise failures.exceptions[0]
