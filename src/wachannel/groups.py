from __future__ import annotations

import asyncio
import datetime as dt
from collections.abc import Awaitable, Callable, Mapping

from loguru import logger

from .session import GroupInfo
from .storage import ChatMetadataStore
from .util.asyncio import cancel_suppress, ensure_task

GroupFetcher = Callable[[], Awaitable[Mapping[str, GroupInfo]]]


class GroupMetadataSync:
    """
    Keep group display names in the chat metadata store fresh.

    Runs on connect and then every `interval_s`; a run inside the refresh
    window is skipped unless forced. Failures are logged and never reach
    message delivery.
    """

    def __init__(
        self,
        store: ChatMetadataStore,
        fetch: GroupFetcher | None = None,
        *,
        interval_s: float,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.store = store
        self.fetch = fetch
        self.interval_s = interval_s
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))
        self._timer: asyncio.Task[None] | None = None

    @property
    def timer_started(self) -> bool:
        return self._timer is not None

    async def sync(self, force: bool = False) -> bool:
        """Returns True when a fetch ran and was stored."""

        if not force:
            last = await self.store.last_group_sync()
            if last is not None and (self._clock() - last).total_seconds() < self.interval_s:
                logger.debug("Skipping group sync, last synced at {}", last.isoformat())
                return False

        if self.fetch is None:
            logger.debug("Skipping group sync, no session")
            return False

        try:
            logger.info("Syncing group metadata")
            groups = await self.fetch()
            names = {jid: g.subject for jid, g in groups.items() if g.subject}
            await self.store.update_chat_names(names)
            await self.store.set_last_group_sync(self._clock())
        except Exception as e:
            logger.error("Failed to sync group metadata: {}", e)
            return False

        logger.info("Group metadata synced ({} groups)", len(names))
        return True

    def start_timer(self) -> None:
        """Start the recurring sync; a no-op while one is already running."""

        if self._timer is not None:
            return
        self._timer = ensure_task(self._run_periodic(), name="wachannel.group_sync")

    async def stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        await cancel_suppress(timer)

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.sync()
            except Exception:
                logger.exception("Periodic group sync failed")
