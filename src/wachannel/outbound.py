from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from loguru import logger

from .constants import SEND_MAX_ATTEMPTS, SEND_RETRY_DELAY_S

# Raises (normally `SendFailedError`) when the item was not delivered.
SendAttempt = Callable[[str, str], Awaitable[None]]


@dataclass(slots=True)
class OutboundItem:
    destination: str
    text: str
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0


class OutboundQueue:
    """
    FIFO of messages that could not be sent because the session was not open.

    `flush()` runs on each transition to open and drains the queue in order.
    The head item is retried up to `max_attempts` times per pass, `retry_delay_s`
    apart, before the rest of the queue moves on; only an item that exhausts
    its attempts is set aside and put back at the tail for the next pass. If the
    session drops mid-pass the pass stops and the remaining items keep their
    order.
    """

    def __init__(
        self,
        *,
        max_attempts: int = SEND_MAX_ATTEMPTS,
        retry_delay_s: float = SEND_RETRY_DELAY_S,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._items: deque[OutboundItem] = deque()
        self._flushing = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def flushing(self) -> bool:
        return self._flushing

    def items(self) -> list[OutboundItem]:
        return list(self._items)

    def enqueue(self, destination: str, text: str) -> OutboundItem:
        item = OutboundItem(destination=destination, text=text)
        self._items.append(item)
        return item

    async def flush(
        self, send: SendAttempt, *, is_open: Callable[[], bool] = lambda: True
    ) -> int:
        """
        Resend queued items in order. Returns the number delivered.

        Items enqueued while the pass runs are drained by the same pass.
        """

        if self._flushing or not self._items:
            return 0
        self._flushing = True
        delivered = 0
        deferred: list[OutboundItem] = []
        try:
            logger.info("Flushing outgoing message queue ({} queued)", len(self._items))
            while self._items and is_open():
                item = self._items[0]
                if await self._resend(item, send, is_open):
                    self._items.popleft()
                    delivered += 1
                elif not is_open():
                    break
                else:
                    self._items.popleft()
                    deferred.append(item)
                    logger.warning(
                        "Giving up on {} for this pass after {} attempt(s)",
                        item.destination,
                        item.attempts,
                    )
        finally:
            self._items.extend(deferred)
            self._flushing = False
        if self._items:
            logger.info("{} message(s) still queued after flush", len(self._items))
        return delivered

    async def _resend(
        self, item: OutboundItem, send: SendAttempt, is_open: Callable[[], bool]
    ) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            item.attempts += 1
            try:
                await send(item.destination, item.text)
            except Exception as e:
                if not is_open():
                    return False
                logger.warning(
                    "Resend to {} failed (attempt {}/{}): {}",
                    item.destination,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_s)
                continue
            return True
        return False
