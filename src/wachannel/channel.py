from __future__ import annotations

import asyncio
import datetime as dt
from typing import Any

from loguru import logger

from .config import ChannelConfig
from .connection import ConnectionManager, ConnectionState
from .constants import STATUS_BROADCAST
from .exceptions import SendFailedError
from .groups import GroupMetadataSync
from .identity import IdentityResolver
from .jid import is_group, is_user, jid_user
from .media import MediaDownloader, download_media
from .normalizer import InboundNormalizer
from .outbound import OutboundQueue
from .session import MessagesUpsert, Session, SessionFactory, WebMessage
from .storage import ChatMetadataStore, MediaPersistence
from .transcription import Transcriber, TranscriptionBridge, WhisperTranscriber
from .types import InboundMessage, OnChatMetadata, OnInboundMessage, RegisteredGroups


def _iso_timestamp(seconds: int | float | str | None) -> str:
    try:
        ts = float(seconds or 0)
    except (TypeError, ValueError):
        ts = 0.0
    when = dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc)
    return when.isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _call(cb: Any, *args: Any) -> None:
    res = cb(*args)
    if asyncio.iscoroutine(res):
        await res


class WhatsAppChannel:
    """
    WhatsApp channel for a message-driven consumer.

    - `connect()` returns after the first successful open; later drops are
      reconnected silently.
    - `send_message()` never raises: while offline (or on a failed send) the
      message is queued and flushed in order on the next open.
    - every inbound message fires `on_chat_metadata`; messages in chats listed
      by `registered_groups()` also produce one `InboundMessage`.
    """

    name = "whatsapp"
    prefix_assistant_name = True

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        on_message: OnInboundMessage,
        on_chat_metadata: OnChatMetadata,
        registered_groups: RegisteredGroups,
        config: ChannelConfig | None = None,
        downloader: MediaDownloader | None = None,
        transcriber: Transcriber | None = None,
        metadata_store: ChatMetadataStore | None = None,
    ) -> None:
        self.config = config or ChannelConfig()
        self.on_message = on_message
        self.on_chat_metadata = on_chat_metadata
        self.registered_groups = registered_groups

        self.outgoing = OutboundQueue(
            max_attempts=self.config.send_max_attempts,
            retry_delay_s=self.config.send_retry_delay_s,
        )
        self.identity = IdentityResolver()
        self.normalizer = InboundNormalizer(
            download=downloader or download_media,
            persistence=MediaPersistence(self.config),
            transcription=TranscriptionBridge(
                transcriber
                or WhisperTranscriber(
                    python=self.config.transcription_python,
                    model=self.config.transcription_model,
                    timeout_s=self.config.transcription_timeout_s,
                ),
                timeout_s=self.config.transcription_timeout_s,
            ),
        )
        self.group_sync = GroupMetadataSync(
            metadata_store or ChatMetadataStore(self.config.metadata_path),
            interval_s=self.config.group_sync_interval_s,
        )
        self.connection = ConnectionManager(
            session_factory,
            self.config,
            on_open=self._on_open,
            on_session=self._on_session,
            on_logged_out=self._on_logged_out,
        )

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def connect(self) -> None:
        await self.connection.start()

    async def disconnect(self) -> None:
        await self.connection.stop()
        await self.group_sync.stop_timer()

    async def wait_until_logged_out(self) -> None:
        """Raises `AuthRequiredError` once the session is logged out; hosts exit on it."""

        await self.connection.wait_until_logged_out()

    def is_connected(self) -> bool:
        return self.connection.is_open

    def owns_jid(self, jid: str) -> bool:
        return is_group(jid) or is_user(jid)

    async def send_message(self, jid: str, text: str) -> None:
        if not self.connection.is_open:
            self.outgoing.enqueue(jid, text)
            logger.info(
                "WhatsApp disconnected, message to {} queued ({} queued)", jid, len(self.outgoing)
            )
            return
        try:
            await self._deliver(jid, text)
        except SendFailedError as e:
            self.outgoing.enqueue(jid, text)
            logger.warning(
                "Failed to send to {}, queued for retry ({} queued): {}", jid, len(self.outgoing), e
            )

    async def _deliver(self, jid: str, text: str) -> None:
        session = self.connection.session
        if session is None or not self.connection.is_open:
            raise SendFailedError("not connected")
        try:
            await session.send_text(jid, text)
        except Exception as e:
            raise SendFailedError(str(e)) from e
        logger.info("Message sent to {} ({} chars)", jid, len(text))

    async def set_typing(self, jid: str, is_typing: bool) -> None:
        session = self.connection.session
        if session is None:
            return
        status = "composing" if is_typing else "paused"
        try:
            logger.debug("Sending presence update {} to {}", status, jid)
            await session.send_presence(status, jid)
        except Exception as e:
            logger.debug("Failed to update typing status for {}: {}", jid, e)

    async def sync_group_metadata(self, force: bool = False) -> None:
        await self.group_sync.sync(force=force)

    def _on_session(self, session: Session) -> None:
        self.identity.set_lookup(session.get_pn_for_lid)
        self.group_sync.fetch = session.group_fetch_all_participating
        session.events.on("messages.upsert", lambda ev: self._on_messages(session, ev))

    async def _on_open(self, session: Session) -> None:
        # Announce availability so the server relays presence (typing) updates.
        try:
            await session.send_presence("available")
        except Exception as e:
            logger.debug("Failed to announce presence: {}", e)

        self.identity.seed(session.user)

        try:
            await self.outgoing.flush(self._deliver, is_open=lambda: self.connection.is_open)
        except Exception:
            logger.exception("Failed to flush outgoing queue")

        await self.group_sync.sync()
        self.group_sync.start_timer()

    async def _on_logged_out(self) -> None:
        self.group_sync.fetch = None
        await self.group_sync.stop_timer()

    async def _on_messages(self, session: Session, upsert: MessagesUpsert) -> None:
        if session is not self.connection.session:
            return
        for msg in upsert.messages:
            try:
                await self._handle_message(msg)
            except Exception:
                logger.exception("Failed to handle inbound message {}", msg.key.id)

    async def _handle_message(self, msg: WebMessage) -> None:
        if not msg.message:
            return
        raw_jid = msg.key.remote_jid
        if not raw_jid or raw_jid == STATUS_BROADCAST:
            return

        chat_jid = await self.identity.translate(raw_jid)
        timestamp = _iso_timestamp(msg.message_timestamp)

        # Every message feeds chat discovery, registered or not.
        try:
            await _call(self.on_chat_metadata, chat_jid, timestamp)
        except Exception:
            logger.exception("on_chat_metadata failed for {}", chat_jid)

        group = self.registered_groups().get(chat_jid)
        if group is None:
            return

        message_id = msg.key.id or ""
        content = await self.normalizer.extract(
            msg.message, message_id=message_id, folder=group.folder
        )

        sender = msg.key.participant or msg.key.remote_jid or ""
        sender = await self.identity.translate(sender)
        inbound = InboundMessage(
            id=message_id,
            chat_jid=chat_jid,
            sender=sender,
            sender_name=msg.push_name or jid_user(sender),
            content=content,
            timestamp=timestamp,
            is_from_me=bool(msg.key.from_me),
        )
        try:
            await _call(self.on_message, chat_jid, inbound)
        except Exception:
            logger.exception("on_message failed for {}", chat_jid)
