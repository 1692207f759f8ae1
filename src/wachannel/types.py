from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """The one shape delivered to the consumer for every message in a registered chat."""

    id: str
    chat_jid: str
    sender: str
    sender_name: str
    content: str
    timestamp: str  # ISO-8601, UTC
    is_from_me: bool = False


@dataclass(frozen=True, slots=True)
class RegisteredGroup:
    """A chat the consumer wants full messages for; `folder` receives its media."""

    name: str
    folder: str
    trigger: str | None = None


OnInboundMessage = Callable[[str, InboundMessage], Awaitable[None] | None]
OnChatMetadata = Callable[[str, str], Awaitable[None] | None]
RegisteredGroups = Callable[[], Mapping[str, RegisteredGroup]]
