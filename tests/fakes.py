from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from wachannel.config import ChannelConfig
from wachannel.session import (
    ConnectionUpdate,
    GroupInfo,
    MessageKey,
    MessagesUpsert,
    SessionUser,
    WebMessage,
)
from wachannel.util.events import AsyncEventEmitter


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"closed with {status_code}")
        self.status_code = status_code


class FakeSession:
    """In-memory session: tests drive it by emitting the events a real one would."""

    def __init__(self, *, user: SessionUser | None = None) -> None:
        self.events = AsyncEventEmitter()
        self.user = user
        self.sent: list[tuple[str, str]] = []
        self.presence: list[tuple[str, str | None]] = []
        self.fail_sends_to: set[str] = set()
        self.fail_all_sends = False
        self.fail_next_sends = 0
        self.lid_map: dict[str, str] = {}
        self.lid_lookups: list[str] = []
        self.groups: dict[str, GroupInfo] = {}
        self.group_fetches = 0
        self.creds_saved = 0
        self.closed = False

    async def send_text(self, jid: str, text: str) -> None:
        if self.fail_all_sends or jid in self.fail_sends_to:
            raise RuntimeError(f"send to {jid} rejected")
        if self.fail_next_sends > 0:
            self.fail_next_sends -= 1
            raise RuntimeError("temporary send failure")
        self.sent.append((jid, text))

    async def send_presence(self, state: str, jid: str | None = None) -> None:
        self.presence.append((state, jid))

    async def get_pn_for_lid(self, lid_jid: str) -> str | None:
        self.lid_lookups.append(lid_jid)
        return self.lid_map.get(lid_jid)

    async def group_fetch_all_participating(self) -> Mapping[str, GroupInfo]:
        self.group_fetches += 1
        return dict(self.groups)

    async def save_creds(self) -> None:
        self.creds_saved += 1

    async def close(self) -> None:
        self.closed = True

    async def open(self) -> None:
        await self.events.emit("connection.update", ConnectionUpdate(connection="open"))

    async def drop(self, status_code: int = 428) -> None:
        await self.events.emit(
            "connection.update",
            ConnectionUpdate(connection="close", last_disconnect=StatusError(status_code)),
        )

    async def receive(self, *messages: WebMessage) -> None:
        await self.events.emit("messages.upsert", MessagesUpsert(messages=list(messages)))


class FakeSessionFactory:
    def __init__(self, *, failures: int = 0, user: SessionUser | None = None) -> None:
        self.failures = failures
        self.user = user
        self.sessions: list[FakeSession] = []
        self.calls = 0
        self._created = asyncio.Event()

    async def __call__(self, config: ChannelConfig) -> FakeSession:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("connect refused")
        session = FakeSession(user=self.user)
        self.sessions.append(session)
        self._created.set()
        return session

    @property
    def current(self) -> FakeSession:
        return self.sessions[-1]

    async def wait_for_session(self, count: int, timeout_s: float = 2.0) -> FakeSession:
        async def _wait() -> None:
            while len(self.sessions) < count:
                self._created.clear()
                await self._created.wait()

        await asyncio.wait_for(_wait(), timeout=timeout_s)
        return self.sessions[count - 1]


def web_message(
    message: Any,
    *,
    remote_jid: str = "120363@g.us",
    participant: str | None = "5511999@s.whatsapp.net",
    msg_id: str = "MSG1",
    from_me: bool = False,
    timestamp: int = 1_700_000_000,
    push_name: str | None = "Alice",
) -> WebMessage:
    return WebMessage(
        key=MessageKey(remote_jid=remote_jid, from_me=from_me, id=msg_id, participant=participant),
        message=message,
        message_timestamp=timestamp,
        push_name=push_name,
    )


async def settle(rounds: int = 20) -> None:
    """Let background tasks spawned by event handlers run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


