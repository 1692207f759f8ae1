from __future__ import annotations

import os
import sys
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    GROUP_SYNC_INTERVAL_S,
    RECONNECT_DELAY_S,
    SEND_MAX_ATTEMPTS,
    SEND_RETRY_DELAY_S,
    TEXT_EXCERPT_CHARS,
    TRANSCRIPTION_TIMEOUT_S,
)

_ENV_PREFIX = "WACHANNEL_"


@dataclass(slots=True)
class ChannelConfig:
    store_dir: Path = field(default_factory=lambda: Path("store"))
    groups_dir: Path = field(default_factory=lambda: Path("groups"))
    # Where `groups_dir/<folder>/media` is visible to the consumer.
    container_media_dir: str = "/workspace/group/media"
    fallback_media_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    reconnect_delay_s: float = RECONNECT_DELAY_S
    group_sync_interval_s: float = GROUP_SYNC_INTERVAL_S

    send_max_attempts: int = SEND_MAX_ATTEMPTS
    send_retry_delay_s: float = SEND_RETRY_DELAY_S

    transcription_python: str = sys.executable
    transcription_model: str = "medium"
    transcription_timeout_s: float = TRANSCRIPTION_TIMEOUT_S

    text_excerpt_chars: int = TEXT_EXCERPT_CHARS

    @property
    def metadata_path(self) -> Path:
        return self.store_dir / "chat_metadata.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ChannelConfig:
        """
        Build a config from `WACHANNEL_*` environment variables.

        Unset variables keep their defaults. Numeric values are parsed eagerly so
        a typo fails at startup rather than on the first reconnect.
        """

        env = os.environ if environ is None else environ
        cfg = cls()

        def get(name: str) -> str | None:
            value = env.get(_ENV_PREFIX + name)
            return value if value else None

        if (v := get("STORE_DIR")) is not None:
            cfg.store_dir = Path(v).expanduser()
        if (v := get("GROUPS_DIR")) is not None:
            cfg.groups_dir = Path(v).expanduser()
        if (v := get("CONTAINER_MEDIA_DIR")) is not None:
            cfg.container_media_dir = v.rstrip("/")
        if (v := get("FALLBACK_MEDIA_DIR")) is not None:
            cfg.fallback_media_dir = Path(v).expanduser()
        if (v := get("RECONNECT_DELAY_S")) is not None:
            cfg.reconnect_delay_s = float(v)
        if (v := get("GROUP_SYNC_INTERVAL_S")) is not None:
            cfg.group_sync_interval_s = float(v)
        if (v := get("SEND_MAX_ATTEMPTS")) is not None:
            cfg.send_max_attempts = int(v)
        if (v := get("SEND_RETRY_DELAY_S")) is not None:
            cfg.send_retry_delay_s = float(v)
        if (v := get("TRANSCRIPTION_PYTHON")) is not None:
            cfg.transcription_python = v
        if (v := get("TRANSCRIPTION_MODEL")) is not None:
            cfg.transcription_model = v
        if (v := get("TRANSCRIPTION_TIMEOUT_S")) is not None:
            cfg.transcription_timeout_s = float(v)
        if (v := get("TEXT_EXCERPT_CHARS")) is not None:
            cfg.text_excerpt_chars = int(v)
        return cfg
