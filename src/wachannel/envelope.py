"""
Inbound `Message` envelopes as a tagged variant.

Payloads arrive either as protobuf `Message` objects or as mappings in the
WAProto JSON shape (camelCase field names, bytes as base64). Both are reduced
to a plain dict first, then wrapper layers are peeled with `unwrap()` and the
remaining content is classified by `parse_message()`.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from google.protobuf.json_format import MessageToDict
from google.protobuf.message import Message as ProtoMessage

# Layers that carry the real content one level deeper under `.message`.
WRAPPER_KINDS: tuple[str, ...] = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
)

_MEDIA_FIELDS: dict[str, str] = {
    "imageMessage": "image",
    "documentMessage": "document",
    "videoMessage": "video",
    "audioMessage": "audio",
    "stickerMessage": "sticker",
}


class BodyKind(str, Enum):
    CONVERSATION = "conversation"
    EXTENDED_TEXT = "extendedTextMessage"
    IMAGE = "imageMessage"
    VIDEO = "videoMessage"
    DOCUMENT = "documentMessage"
    AUDIO = "audioMessage"
    STICKER = "stickerMessage"
    LIST_RESPONSE = "listResponseMessage"
    BUTTONS_RESPONSE = "buttonsResponseMessage"
    TEMPLATE_REPLY = "templateButtonReplyMessage"
    OTHER = "other"
    EMPTY = "empty"


# (field, text key) in extraction priority order.
_TEXT_SOURCES: tuple[tuple[str, str | None], ...] = (
    ("conversation", None),
    ("extendedTextMessage", "text"),
    ("imageMessage", "caption"),
    ("videoMessage", "caption"),
    ("documentMessage", "caption"),
    ("listResponseMessage", "title"),
    ("buttonsResponseMessage", "selectedDisplayText"),
    ("templateButtonReplyMessage", "selectedDisplayText"),
)

# Content fields that may carry a `contextInfo` with forwarding details.
_CONTEXT_FIELDS: tuple[str, ...] = (
    "extendedTextMessage",
    "imageMessage",
    "videoMessage",
    "documentMessage",
    "audioMessage",
    "stickerMessage",
    "listResponseMessage",
    "buttonsResponseMessage",
    "templateButtonReplyMessage",
)


@dataclass(frozen=True, slots=True)
class ForwardingInfo:
    is_forwarded: bool = False
    forwarding_score: int = 0

    @property
    def forwarded(self) -> bool:
        return self.is_forwarded or self.forwarding_score > 0


@dataclass(frozen=True, slots=True)
class MediaInfo:
    kind: str  # "image" | "document" | "video" | "audio" | "sticker"
    mimetype: str = ""
    file_name: str = ""
    caption: str = ""
    ptt: bool = False
    url: str | None = None
    direct_path: str | None = None
    media_key: bytes | None = None
    file_sha256: bytes | None = None
    file_length: int | None = None

    @property
    def downloadable(self) -> bool:
        return bool(self.media_key and (self.url or self.direct_path))

    def describe(self, note: str | None = None) -> str:
        label = self.mimetype or self.kind
        if self.file_name:
            label = f"{label}, {self.file_name}"
        if note:
            label = f"{label} - {note}"
        return f"[Media: {label}]"


@dataclass(frozen=True, slots=True)
class MessageBody:
    kind: BodyKind
    text: str = ""
    media: MediaInfo | None = None
    forwarding: ForwardingInfo = ForwardingInfo()
    wrappers: tuple[str, ...] = ()

    @property
    def is_voice_note(self) -> bool:
        return self.media is not None and self.media.kind == "audio" and self.media.ptt

    @property
    def forwarded(self) -> bool:
        return self.forwarding.forwarded


def as_mapping(message: Any) -> dict[str, Any]:
    """Reduce a protobuf `Message` or a mapping to a plain dict; anything else is empty."""

    if message is None:
        return {}
    if isinstance(message, ProtoMessage):
        return MessageToDict(message)
    if isinstance(message, Mapping):
        return dict(message)
    return {}


def _inner(message: Mapping[str, Any], kind: str) -> dict[str, Any] | None:
    wrapper = message.get(kind)
    if not isinstance(wrapper, Mapping):
        return None
    inner = wrapper.get("message")
    if not isinstance(inner, Mapping):
        return None
    return dict(inner)


def unwrap_layer(
    message: Mapping[str, Any], *, skip: tuple[str, ...] | list[str] = ()
) -> tuple[dict[str, Any], str | None]:
    """
    Peel one wrapper layer, ignoring the kinds in `skip`.

    Returns `(inner, kind)`, or `(message, None)` when there is nothing to peel.
    """

    for kind in WRAPPER_KINDS:
        if kind in skip:
            continue
        inner = _inner(message, kind)
        if inner is not None:
            return inner, kind
    return dict(message), None


def unwrap(message: Any) -> tuple[dict[str, Any], tuple[str, ...]]:
    """
    Peel at most one layer of each wrapper kind, in whatever order they nest.

    Applying this to an already-unwrapped message is a no-op.
    """

    current = as_mapping(message)
    peeled: list[str] = []
    while True:
        current, kind = unwrap_layer(current, skip=peeled)
        if kind is None:
            return current, tuple(peeled)
        peeled.append(kind)


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _bytes(value: Any) -> bytes | None:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value) or None
    if isinstance(value, str) and value:
        try:
            return base64.b64decode(value, validate=False)
        except (binascii.Error, ValueError):
            return None
    return None


def _forwarding(message: Mapping[str, Any]) -> ForwardingInfo:
    for field_name in _CONTEXT_FIELDS:
        info = _context_info(message.get(field_name))
        if info is not None:
            return info
    return ForwardingInfo()


def _context_info(content: Any) -> ForwardingInfo | None:
    if not isinstance(content, Mapping):
        return None
    ctx = content.get("contextInfo")
    if not isinstance(ctx, Mapping):
        return None
    return ForwardingInfo(
        is_forwarded=bool(ctx.get("isForwarded")),
        forwarding_score=_int(ctx.get("forwardingScore")) or 0,
    )


def _media(message: Mapping[str, Any]) -> MediaInfo | None:
    for field_name, kind in _MEDIA_FIELDS.items():
        m = message.get(field_name)
        if not isinstance(m, Mapping):
            continue
        return MediaInfo(
            kind=kind,
            mimetype=_str(m.get("mimetype")),
            file_name=_str(m.get("fileName")),
            caption=_str(m.get("caption")),
            ptt=bool(m.get("ptt")),
            url=_str(m.get("url")) or None,
            direct_path=_str(m.get("directPath")) or None,
            media_key=_bytes(m.get("mediaKey")),
            file_sha256=_bytes(m.get("fileSha256")),
            file_length=_int(m.get("fileLength")),
        )
    return None


def _text(message: Mapping[str, Any]) -> str:
    for field_name, key in _TEXT_SOURCES:
        value = message.get(field_name)
        if key is None:
            text = _str(value)
        else:
            text = _str(value.get(key)) if isinstance(value, Mapping) else ""
        if text:
            return text
    return ""


def _kind(message: Mapping[str, Any]) -> BodyKind:
    if not message:
        return BodyKind.EMPTY
    for kind in BodyKind:
        if kind in (BodyKind.OTHER, BodyKind.EMPTY):
            continue
        if message.get(kind.value):
            return kind
    return BodyKind.OTHER


def parse_message(message: Any) -> MessageBody:
    """Unwrap `message` and classify what is inside."""

    inner, wrappers = unwrap(message)
    return MessageBody(
        kind=_kind(inner),
        text=_text(inner),
        media=_media(inner),
        forwarding=_forwarding(inner),
        wrappers=wrappers,
    )
