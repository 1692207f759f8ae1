from __future__ import annotations

import asyncio
import datetime as dt

import pytest

from wachannel.groups import GroupMetadataSync
from wachannel.session import GroupInfo
from wachannel.storage import ChatMetadataStore

DAY = 24 * 60 * 60


class Clock:
    def __init__(self) -> None:
        self.now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += dt.timedelta(seconds=seconds)


class Groups:
    def __init__(self, groups: dict[str, GroupInfo] | None = None) -> None:
        self.groups = groups or {}
        self.calls = 0
        self.fail = False

    async def __call__(self) -> dict[str, GroupInfo]:
        self.calls += 1
        if self.fail:
            raise TimeoutError("group query timed out")
        return dict(self.groups)


@pytest.mark.asyncio
async def test_sync_respects_refresh_window(tmp_path) -> None:
    store = ChatMetadataStore(tmp_path / "chat_metadata.json")
    fetch = Groups({"1@g.us": GroupInfo(id="1@g.us", subject="Family")})
    clock = Clock()
    sync = GroupMetadataSync(store, fetch, interval_s=DAY, clock=clock)

    assert await sync.sync() is True
    clock.advance(DAY - 1)
    assert await sync.sync() is False
    assert fetch.calls == 1

    assert await sync.sync(force=True) is True
    assert fetch.calls == 2

    clock.advance(DAY)
    assert await sync.sync() is True
    assert fetch.calls == 3
    assert await store.last_group_sync() == clock.now


@pytest.mark.asyncio
async def test_sync_stores_subjects_and_skips_unnamed_groups(tmp_path) -> None:
    store = ChatMetadataStore(tmp_path / "chat_metadata.json")
    fetch = Groups(
        {
            "1@g.us": GroupInfo(id="1@g.us", subject="Family"),
            "2@g.us": GroupInfo(id="2@g.us"),
        }
    )
    await GroupMetadataSync(store, fetch, interval_s=DAY).sync()

    assert await store.chat_name("1@g.us") == "Family"
    assert await store.chat_name("2@g.us") is None


@pytest.mark.asyncio
async def test_sync_failures_are_swallowed(tmp_path) -> None:
    store = ChatMetadataStore(tmp_path / "chat_metadata.json")
    fetch = Groups()
    fetch.fail = True
    sync = GroupMetadataSync(store, fetch, interval_s=DAY)

    assert await sync.sync() is False
    # A failed run does not start the refresh window.
    assert await store.last_group_sync() is None

    fetch.fail = False
    assert await sync.sync() is True


@pytest.mark.asyncio
async def test_sync_without_session_is_skipped(tmp_path) -> None:
    sync = GroupMetadataSync(ChatMetadataStore(tmp_path / "m.json"), interval_s=DAY)
    assert await sync.sync(force=True) is False


@pytest.mark.asyncio
async def test_timer_runs_periodically_and_starts_once(tmp_path) -> None:
    store = ChatMetadataStore(tmp_path / "chat_metadata.json")
    fetch = Groups()
    clock = Clock()

    def ticking() -> dt.datetime:
        clock.advance(DAY)
        return clock()

    sync = GroupMetadataSync(store, fetch, interval_s=0.01, clock=ticking)
    sync.start_timer()
    first = sync._timer
    sync.start_timer()
    assert sync._timer is first

    async def _wait() -> None:
        while fetch.calls < 2:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_wait(), timeout=2.0)
    await sync.stop_timer()
    assert first is not None and first.done()
