from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import json
import mimetypes
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger

from .config import ChannelConfig
from .constants import TEXT_DOCUMENT_EXTENSIONS
from .envelope import MediaInfo

# File names come from the sender; only plain extensions are kept.
_SAFE_EXTENSION = re.compile(r"[A-Za-z0-9]{1,10}")


def write_atomic(path: Path, data: bytes) -> None:
    """
    Write `data` to a temp file next to `path` and rename it into place.

    Readers see either the old file or the complete new one, never a partial write.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def _safe_name(name: str) -> str:
    cleaned = name.replace("\x00", "").replace("/", "_").replace("\\", "_").replace(":", "-")
    return cleaned.lstrip(".") or "media"


def media_extension(media: MediaInfo) -> str:
    """Extension used for the saved file (no leading dot)."""

    if media.kind == "image":
        return "png" if "png" in media.mimetype else "jpg"
    if "." in media.file_name:
        ext = media.file_name.rsplit(".", 1)[-1].lower()
        if _SAFE_EXTENSION.fullmatch(ext):
            return ext
    if media.mimetype:
        guessed = mimetypes.guess_extension(media.mimetype.split(";")[0].strip())
        if guessed and _SAFE_EXTENSION.fullmatch(guessed.lstrip(".")):
            return guessed.lstrip(".")
    return "bin"


def is_text_document(media: MediaInfo, ext: str) -> bool:
    return "text" in media.mimetype or ext in TEXT_DOCUMENT_EXTENSIONS


class MediaPersistence:
    """
    Save downloaded media where the consumer can read it.

    With a chat folder, files go to `<groups_dir>/<folder>/media/` and are
    referenced by their path under `container_media_dir`; without one they go
    to the fallback directory and are referenced by their real path.
    """

    def __init__(self, config: ChannelConfig) -> None:
        self.config = config

    def media_dirs(self, folder: str | None) -> tuple[Path, str]:
        if folder:
            return self.config.groups_dir / folder / "media", self.config.container_media_dir
        fallback = self.config.fallback_media_dir
        return fallback, str(fallback)

    async def save(
        self, data: bytes, media: MediaInfo, message_id: str, folder: str | None = None
    ) -> str:
        """
        Persist `data` and describe it. Never raises.

        Returns `[Image: <ref>]`, `[Document: <name>]\\n<excerpt>` for text-like
        documents, `[Document: <name> (<mime>), saved to <ref>]` for other
        documents, or a `[Media: ...]` description.
        """

        is_image = media.mimetype.startswith("image/") or (
            not media.mimetype and media.kind == "image"
        )
        is_document = media.mimetype.startswith(("application/", "text/")) or (
            not media.mimetype and media.kind == "document"
        )
        if not is_image and not is_document:
            return media.describe()

        ext = media_extension(media)
        filename = f"{_safe_name(message_id)}.{ext}"
        local_dir, ref_dir = self.media_dirs(folder)
        path = local_dir / filename
        ref = f"{ref_dir.rstrip('/')}/{filename}"

        try:
            await asyncio.to_thread(write_atomic, path, data)
        except (OSError, ValueError) as e:
            logger.error("Failed to save media {} to {}: {}", message_id, path, e)
            return self.describe_failure(media)

        if is_image:
            logger.info("Image {} saved to {} ({} bytes)", message_id, path, len(data))
            return f"[Image: {ref}]"

        if is_text_document(media, ext):
            text = data.decode("utf-8", errors="replace")[: self.config.text_excerpt_chars]
            logger.info("Text document {} extracted ({} chars)", message_id, len(text))
            return f"[Document: {media.file_name}]\n{text}"

        logger.info("Document {} saved to {} ({})", message_id, path, media.mimetype)
        return f"[Document: {media.file_name} ({media.mimetype}), saved to {ref}]"

    @staticmethod
    def describe_failure(media: MediaInfo) -> str:
        return media.describe("download failed")


class ChatMetadataStore:
    """
    JSON file holding chat display names and the last group sync time.

    Small enough to rewrite whole on each change; writes are atomic.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()
        self._data: dict[str, Any] | None = None

    async def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        try:
            raw = await asyncio.to_thread(self.path.read_text, "utf-8")
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("chat metadata is not an object")
        except FileNotFoundError:
            data = {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable chat metadata {}: {}", self.path, e)
            data = {}
        data.setdefault("chats", {})
        self._data = data
        return data

    async def _save(self, data: dict[str, Any]) -> None:
        payload = json.dumps(data, indent=2, sort_keys=True).encode("utf-8")
        await asyncio.to_thread(write_atomic, self.path, payload)

    async def last_group_sync(self) -> dt.datetime | None:
        async with self._lock:
            data = await self._load()
        value = data.get("last_group_sync")
        if not isinstance(value, str):
            return None
        try:
            parsed = dt.datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)

    async def set_last_group_sync(self, when: dt.datetime | None = None) -> None:
        when = when or dt.datetime.now(dt.timezone.utc)
        async with self._lock:
            data = await self._load()
            data["last_group_sync"] = when.isoformat()
            await self._save(data)

    async def update_chat_names(self, names: dict[str, str]) -> None:
        if not names:
            return
        async with self._lock:
            data = await self._load()
            data["chats"].update(names)
            await self._save(data)

    async def chat_name(self, jid: str) -> str | None:
        async with self._lock:
            data = await self._load()
        name = data["chats"].get(jid)
        return name if isinstance(name, str) else None
