from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger

from .constants import TRANSCRIPTION_TIMEOUT_S, VOICE_TRANSCRIPTION_FAILED
from .exceptions import TranscriptionError

# Runs in the transcription interpreter, which needs `faster-whisper` installed.
WHISPER_SCRIPT = """
import sys
from faster_whisper import WhisperModel
model = WhisperModel(sys.argv[2], compute_type="int8")
segments, info = model.transcribe(sys.argv[1])
print(" ".join(s.text.strip() for s in segments))
"""

Transcriber = Callable[[Path], Awaitable[str]]


class WhisperTranscriber:
    """
    Speech-to-text through faster-whisper in a child process.

    Each call is bounded by `timeout_s`; on timeout the child is killed.
    """

    def __init__(
        self,
        *,
        python: str,
        model: str = "medium",
        timeout_s: float = TRANSCRIPTION_TIMEOUT_S,
        script: str = WHISPER_SCRIPT,
    ) -> None:
        self.python = python
        self.model = model
        self.timeout_s = timeout_s
        self.script = script

    async def __call__(self, audio_path: Path) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.python,
                "-c",
                self.script,
                str(audio_path),
                self.model,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscriptionError(f"failed to start transcriber: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise TranscriptionError(f"transcription timed out after {self.timeout_s:.0f}s") from e
        finally:
            # Timed out or cancelled by the caller: do not leave the child running.
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise TranscriptionError(f"transcriber exited with {proc.returncode}: {err[-500:]}")

        text = stdout.decode("utf-8", errors="replace").strip()
        if not text:
            raise TranscriptionError("transcription returned empty text")
        return text


class TranscriptionBridge:
    def __init__(
        self,
        transcriber: Transcriber,
        *,
        temp_dir: Path | None = None,
        timeout_s: float = TRANSCRIPTION_TIMEOUT_S,
    ) -> None:
        self.transcriber = transcriber
        self.temp_dir = temp_dir
        self.timeout_s = timeout_s

    async def transcribe(self, audio: bytes, message_id: str = "") -> str:
        """
        Transcribe a voice note. Never raises.

        Returns `[Voice: <transcript>]`, or the fixed failure marker if the
        transcriber errors, times out or returns nothing. The temporary audio
        file is removed on every path.
        """

        tmp_path: Path | None = None
        try:
            fd, name = tempfile.mkstemp(
                prefix=f"wachannel-voice-{message_id}-" if message_id else "wachannel-voice-",
                suffix=".ogg",
                dir=self.temp_dir,
            )
            tmp_path = Path(name)
            with os.fdopen(fd, "wb") as f:
                f.write(audio)

            text = (await asyncio.wait_for(self.transcriber(tmp_path), self.timeout_s)).strip()
            if not text:
                raise TranscriptionError("transcription returned empty text")
            logger.info("Voice message {} transcribed ({} chars)", message_id, len(text))
            return f"[Voice: {text}]"
        except Exception as e:
            logger.error("Failed to transcribe voice message {}: {}", message_id, e)
            return VOICE_TRANSCRIPTION_FAILED
        finally:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
