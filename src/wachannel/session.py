"""
Contract for the transport session the adapter drives.

The wire protocol (Noise handshake, Signal sessions, binary stanzas) lives in
a separate library. Anything that emits the events below through an
`AsyncEventEmitter` and implements `Session` can be plugged in through a
`SessionFactory`.

Events:
- `connection.update` with a `ConnectionUpdate`
- `creds.update` with the library's credential object
- `messages.upsert` with a `MessagesUpsert`
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from .config import ChannelConfig
from .util.events import AsyncEventEmitter

PresenceState = Literal["available", "unavailable", "composing", "paused", "recording"]


@dataclass(slots=True)
class ConnectionUpdate:
    connection: str | None = None  # "connecting" | "open" | "close"
    qr: str | None = None
    is_new_login: bool | None = None
    last_disconnect: BaseException | None = None


@dataclass(slots=True)
class MessageKey:
    remote_jid: str | None = None
    from_me: bool = False
    id: str | None = None
    participant: str | None = None


@dataclass(slots=True)
class WebMessage:
    """One received message: routing key plus the (possibly wrapped) `Message` payload."""

    key: MessageKey
    message: Any | None = None  # Mapping in WAProto JSON shape, or a protobuf Message
    message_timestamp: int = 0
    push_name: str | None = None


@dataclass(slots=True)
class MessagesUpsert:
    messages: list[WebMessage] = field(default_factory=list)
    type: str = "notify"


@dataclass(slots=True)
class SessionUser:
    id: str
    lid: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class GroupInfo:
    id: str
    subject: str | None = None


class Session(Protocol):
    events: AsyncEventEmitter

    @property
    def user(self) -> SessionUser | None: ...

    async def send_text(self, jid: str, text: str) -> None: ...

    async def send_presence(self, state: PresenceState, jid: str | None = None) -> None: ...

    async def get_pn_for_lid(self, lid_jid: str) -> str | None: ...

    async def group_fetch_all_participating(self) -> Mapping[str, GroupInfo]: ...

    async def save_creds(self) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[ChannelConfig], Awaitable[Session]]


def disconnect_status_code(err: BaseException | None) -> int | None:
    """
    Best-effort status code of a close reason.

    Sessions report it either directly (`err.status_code`) or Boom-style
    (`err.output.status_code`).
    """

    if err is None:
        return None
    for candidate in (err, getattr(err, "output", None)):
        code = getattr(candidate, "status_code", None)
        if isinstance(code, int):
            return code
    return None
