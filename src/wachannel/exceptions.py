from __future__ import annotations


class WAChannelError(Exception):
    """Base error for the wachannel adapter."""


class ChannelConnectionError(WAChannelError):
    """A connection attempt failed; a reconnect is scheduled."""


class AuthRequiredError(WAChannelError):
    """
    The session was logged out or needs to be paired again.

    This is the only fatal error: the adapter stops reconnecting and the
    hosting process is expected to exit so an operator can re-authenticate.
    """

    def __init__(
        self, message: str = "re-authentication required", *, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class SendFailedError(WAChannelError):
    """A message could not be delivered and was queued for retry."""


class MediaDownloadError(WAChannelError):
    """Media download/decryption failed."""


class TranscriptionError(WAChannelError):
    """The external transcription capability failed, timed out or returned nothing."""
