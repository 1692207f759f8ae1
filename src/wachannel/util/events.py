from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

Listener = Callable[..., Awaitable[None]] | Callable[..., None]


class AsyncEventEmitter:
    """
    Small async-friendly event emitter shared by sessions and the adapter.

    - `on(event, fn)` registers a listener (sync or async).
    - `emit(event, *args)` calls listeners in registration order, awaiting async
      ones, so a single emitter never runs two listeners concurrently.
    - a listener that raises is logged and skipped; it never breaks the source.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
            return
        self._listeners.pop(event, None)

    async def emit(self, event: str, *args: Any) -> bool:
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                res = listener(*args)
                if asyncio.iscoroutine(res):
                    await res
            except Exception:
                logger.exception("Listener for {!r} failed", event)
        return bool(listeners)
