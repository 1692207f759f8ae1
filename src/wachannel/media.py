"""
Inbound media download.

Payloads on the media host are AES-256-CBC encrypted with keys expanded from
the message's `mediaKey`, followed by a 10-byte truncated HMAC-SHA256 over
`iv + ciphertext`.
"""

from __future__ import annotations

import asyncio
import hashlib
import urllib.request
from collections.abc import Awaitable, Callable

from cryptography.hazmat.primitives import constant_time, hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .constants import DEFAULT_MEDIA_HOST, DEFAULT_ORIGIN
from .envelope import MediaInfo
from .exceptions import MediaDownloadError

DOWNLOAD_TIMEOUT_S = 30.0
MAC_LENGTH = 10

# HKDF `info` per media kind; stickers share the image keys.
_KEY_INFO: dict[str, bytes] = {
    "image": b"WhatsApp Image Keys",
    "sticker": b"WhatsApp Image Keys",
    "video": b"WhatsApp Video Keys",
    "audio": b"WhatsApp Audio Keys",
    "document": b"WhatsApp Document Keys",
}

MediaDownloader = Callable[[MediaInfo], Awaitable[bytes]]


def media_url(media: MediaInfo, *, host: str = DEFAULT_MEDIA_HOST) -> str | None:
    """Where to fetch the payload: the envelope's `url`, else the host plus `directPath`."""

    if media.url:
        return media.url
    if media.direct_path:
        return f"https://{host}/{media.direct_path.lstrip('/')}"
    return None


def decrypt_media(payload: bytes, media: MediaInfo, *, validate: bool = True) -> bytes:
    """
    Decrypt a downloaded payload for `media`. Raises `MediaDownloadError`.

    With `validate`, the trailing MAC and (when the envelope carries one) the
    plaintext `fileSha256` are checked.
    """

    info = _KEY_INFO.get(media.kind)
    if info is None:
        raise MediaDownloadError(f"no key derivation for {media.kind!r} media")
    if not media.media_key:
        raise MediaDownloadError("message has no media key")

    okm = HKDF(algorithm=hashes.SHA256(), length=112, salt=None, info=info).derive(
        media.media_key
    )
    iv, cipher_key, mac_key = okm[:16], okm[16:48], okm[48:80]

    ciphertext, mac = payload[:-MAC_LENGTH], payload[-MAC_LENGTH:]
    if not ciphertext or len(ciphertext) % 16:
        raise MediaDownloadError(f"unexpected media payload length {len(payload)}")

    if validate:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(iv + ciphertext)
        if not constant_time.bytes_eq(h.finalize()[:MAC_LENGTH], mac):
            raise MediaDownloadError("media MAC mismatch")

    decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise MediaDownloadError(f"media decryption failed: {e}") from e

    if validate and media.file_sha256 and hashlib.sha256(data).digest() != media.file_sha256:
        raise MediaDownloadError("media plaintext sha256 mismatch")
    return data


def _get(url: str, timeout_s: float) -> bytes:
    req = urllib.request.Request(url, headers={"Origin": DEFAULT_ORIGIN})
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        return bytes(resp.read())


async def fetch_encrypted(url: str, *, timeout_s: float = DOWNLOAD_TIMEOUT_S) -> bytes:
    return await asyncio.to_thread(_get, url, timeout_s)


async def download_media(media: MediaInfo, *, validate: bool = True) -> bytes:
    """Fetch and decrypt the payload described by `media`. Raises `MediaDownloadError`."""

    url = media_url(media)
    if url is None or not media.downloadable:
        raise MediaDownloadError("message has no downloadable media")
    try:
        payload = await fetch_encrypted(url)
    except Exception as e:
        raise MediaDownloadError(f"media download failed: {e}") from e
    return decrypt_media(payload, media, validate=validate)
