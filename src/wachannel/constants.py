from __future__ import annotations

from enum import IntEnum

S_WHATSAPP_NET = "@s.whatsapp.net"
G_US = "@g.us"
LID = "@lid"
STATUS_BROADCAST = "status@broadcast"

DEFAULT_MEDIA_HOST = "mmg.whatsapp.net"
DEFAULT_ORIGIN = "https://web.whatsapp.com"

GROUP_SYNC_INTERVAL_S = 24 * 60 * 60
RECONNECT_DELAY_S = 5.0
TRANSCRIPTION_TIMEOUT_S = 60.0
TEXT_EXCERPT_CHARS = 5000
SEND_MAX_ATTEMPTS = 3
SEND_RETRY_DELAY_S = 1.0

FORWARDED_PREFIX = "[Forwarded message]\n"
VOICE_TRANSCRIPTION_FAILED = "[Voice message - transcription failed]"

# Text-like document extensions whose content is inlined into the message.
TEXT_DOCUMENT_EXTENSIONS = frozenset({"txt", "csv", "json", "html", "xml", "md"})


class DisconnectReason(IntEnum):
    """Close status codes reported by the session (mirrors Baileys' DisconnectReason)."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503
