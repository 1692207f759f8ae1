from __future__ import annotations

from typing import Any

from loguru import logger

from .constants import FORWARDED_PREFIX, VOICE_TRANSCRIPTION_FAILED
from .envelope import MessageBody, parse_message
from .media import MediaDownloader
from .storage import MediaPersistence
from .transcription import TranscriptionBridge


class InboundNormalizer:
    """
    Turn a raw (possibly wrapped) `Message` into the text delivered to the consumer.

    Order of precedence:
    1. voice notes are replaced by their transcription
    2. text (conversation, extended text, captions, list/button replies)
    3. caption-less images and documents are downloaded and described
    4. any other media is described by mime type and file name

    Forwarded messages get `[Forwarded message]` prepended exactly once.
    """

    def __init__(
        self,
        *,
        download: MediaDownloader,
        persistence: MediaPersistence,
        transcription: TranscriptionBridge,
    ) -> None:
        self.download = download
        self.persistence = persistence
        self.transcription = transcription

    async def extract(self, message: Any, *, message_id: str, folder: str | None = None) -> str:
        """Never raises; every failure degrades to a descriptive string."""

        try:
            body = parse_message(message)
        except Exception:
            logger.exception("Unparseable message {}", message_id)
            return ""

        try:
            content = await self._content(body, message_id=message_id, folder=folder)
        except Exception:
            logger.exception("Failed to extract content of message {}", message_id)
            content = body.media.describe() if body.media is not None else body.text

        if content and body.forwarded:
            content = FORWARDED_PREFIX + content
        return content

    async def _content(self, body: MessageBody, *, message_id: str, folder: str | None) -> str:
        media = body.media

        if media is not None and body.is_voice_note:
            try:
                audio = await self.download(media)
            except Exception as e:
                logger.error("Failed to download voice message {}: {}", message_id, e)
                return VOICE_TRANSCRIPTION_FAILED
            return await self.transcription.transcribe(audio, message_id)

        if body.text:
            return body.text

        if media is None:
            return ""

        if media.kind in ("image", "document"):
            try:
                data = await self.download(media)
            except Exception as e:
                logger.error(
                    "Failed to download media {} ({}): {}", message_id, media.mimetype, e
                )
                return self.persistence.describe_failure(media)
            return await self.persistence.save(data, media, message_id, folder)

        return media.describe()
