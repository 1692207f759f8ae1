"""
wachannel: a resilient asyncio WhatsApp channel adapter.

It drives a transport session (see `wachannel.session`), reconnects on drops,
queues outbound messages while offline, resolves LID identifiers to phone
JIDs, and normalizes inbound envelopes into `InboundMessage` events.
"""

from __future__ import annotations

from loguru import logger

from .channel import WhatsAppChannel
from .config import ChannelConfig
from .connection import ConnectionState
from .exceptions import (
    AuthRequiredError,
    ChannelConnectionError,
    MediaDownloadError,
    SendFailedError,
    TranscriptionError,
    WAChannelError,
)
from .types import InboundMessage, RegisteredGroup

# Library logging is opt-in: `logger.enable("wachannel")`.
logger.disable("wachannel")

__all__ = [
    "AuthRequiredError",
    "ChannelConfig",
    "ChannelConnectionError",
    "ConnectionState",
    "InboundMessage",
    "MediaDownloadError",
    "RegisteredGroup",
    "SendFailedError",
    "TranscriptionError",
    "WAChannelError",
    "WhatsAppChannel",
]

__version__ = "0.1.0"
