from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if not task or task.done():
        return
    # Never cancel/await the current task ("Task cannot await on itself").
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def ensure_task(
    coro: Coroutine[Any, Any, T],
    *,
    name: str | None = None,
    tasks: set[asyncio.Task[Any]] | None = None,
) -> asyncio.Task[T]:
    """
    Schedule `coro` as a background task.

    When `tasks` is given the task is kept there until it finishes, so a
    fire-and-forget task is not garbage collected mid-flight.
    """

    t: asyncio.Task[T] = asyncio.create_task(coro, name=name)
    if tasks is not None:
        tasks.add(t)
        t.add_done_callback(tasks.discard)
    return t
