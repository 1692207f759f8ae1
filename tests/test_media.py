from __future__ import annotations

import hashlib
import hmac
import secrets

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from wachannel import media as media_mod
from wachannel.envelope import MediaInfo
from wachannel.exceptions import MediaDownloadError
from wachannel.media import decrypt_media, download_media, media_url


def _expand(media_key: bytes, label: str) -> tuple[bytes, bytes, bytes]:
    # RFC 5869 with an empty salt, written out independently of the library.
    info = f"WhatsApp {label} Keys".encode()
    prk = hmac.new(b"", media_key, hashlib.sha256).digest()
    okm, block, counter = b"", b"", 1
    while len(okm) < 112:
        block = hmac.new(prk, block + info + bytes([counter]), hashlib.sha256).digest()
        okm += block
        counter += 1
    return okm[:16], okm[16:48], okm[48:80]


def _encrypt(data: bytes, media_key: bytes, label: str) -> bytes:
    iv, cipher_key, mac_key = _expand(media_key, label)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    mac = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()[:10]
    return ciphertext + mac


def test_decrypt_media_validates_mac() -> None:
    media_key = secrets.token_bytes(32)
    data = b"%PDF-1.7\n" + b"x" * 1000
    enc = _encrypt(data, media_key, "Document")
    doc = MediaInfo(kind="document", media_key=media_key)

    assert decrypt_media(enc, doc) == data

    tampered = enc[:-1] + bytes([enc[-1] ^ 0x01])
    with pytest.raises(MediaDownloadError, match="MAC mismatch"):
        decrypt_media(tampered, doc)

    # Keys are bound to the media kind.
    with pytest.raises(MediaDownloadError, match="MAC mismatch"):
        decrypt_media(enc, MediaInfo(kind="image", media_key=media_key))


def test_voice_notes_and_stickers_use_their_kind_keys() -> None:
    media_key = secrets.token_bytes(32)
    audio = b"OggS" + b"\x00" * 40
    sticker = b"RIFF....WEBP"

    voice = MediaInfo(kind="audio", ptt=True, media_key=media_key)
    assert decrypt_media(_encrypt(audio, media_key, "Audio"), voice) == audio
    webp = MediaInfo(kind="sticker", media_key=media_key)
    assert decrypt_media(_encrypt(sticker, media_key, "Image"), webp) == sticker


def test_decrypt_media_rejects_malformed_payloads() -> None:
    media_key = secrets.token_bytes(32)
    with pytest.raises(MediaDownloadError, match="payload length"):
        decrypt_media(b"short", MediaInfo(kind="image", media_key=media_key))
    with pytest.raises(MediaDownloadError, match="media key"):
        decrypt_media(b"\x00" * 42, MediaInfo(kind="image"))


def test_media_url() -> None:
    assert media_url(MediaInfo(kind="image", direct_path="/v/t62/abc")) == (
        "https://mmg.whatsapp.net/v/t62/abc"
    )
    assert media_url(MediaInfo(kind="image", direct_path="v/t62/abc")) == (
        "https://mmg.whatsapp.net/v/t62/abc"
    )
    assert media_url(MediaInfo(kind="image", url="https://cdn/x", direct_path="/y")) == (
        "https://cdn/x"
    )
    assert media_url(MediaInfo(kind="image")) is None


@pytest.mark.asyncio
async def test_download_media_decrypts_and_checks_hash(monkeypatch) -> None:
    media_key = secrets.token_bytes(32)
    audio = b"OggS" + secrets.token_bytes(500)
    enc = _encrypt(audio, media_key, "Audio")
    requested: list[str] = []

    async def fake_fetch(url: str, **kwargs) -> bytes:
        requested.append(url)
        return enc

    monkeypatch.setattr(media_mod, "fetch_encrypted", fake_fetch)

    info = MediaInfo(
        kind="audio",
        ptt=True,
        direct_path="/v/t62.7117-24/voice",
        media_key=media_key,
        file_sha256=hashlib.sha256(audio).digest(),
    )
    assert await download_media(info) == audio
    assert requested == ["https://mmg.whatsapp.net/v/t62.7117-24/voice"]

    wrong_hash = MediaInfo(
        kind="audio",
        ptt=True,
        url="https://example.com/voice",
        media_key=media_key,
        file_sha256=b"\x00" * 32,
    )
    with pytest.raises(MediaDownloadError, match="sha256"):
        await download_media(wrong_hash)


@pytest.mark.asyncio
async def test_download_media_wraps_failures(monkeypatch) -> None:
    async def failing(url: str, **kwargs) -> bytes:
        raise OSError("connection reset")

    monkeypatch.setattr(media_mod, "fetch_encrypted", failing)

    with pytest.raises(MediaDownloadError, match="connection reset"):
        await download_media(MediaInfo(kind="image", url="https://x", media_key=b"k" * 32))

    with pytest.raises(MediaDownloadError, match="no downloadable media"):
        await download_media(MediaInfo(kind="image"))
