from __future__ import annotations

from pathlib import Path

import pytest

from wachannel.config import ChannelConfig
from wachannel.constants import GROUP_SYNC_INTERVAL_S, RECONNECT_DELAY_S


def test_defaults() -> None:
    cfg = ChannelConfig()
    assert cfg.reconnect_delay_s == RECONNECT_DELAY_S == 5.0
    assert cfg.group_sync_interval_s == GROUP_SYNC_INTERVAL_S == 24 * 60 * 60
    assert cfg.container_media_dir == "/workspace/group/media"
    assert cfg.metadata_path == Path("store") / "chat_metadata.json"
    assert (cfg.send_max_attempts, cfg.send_retry_delay_s) == (3, 1.0)


def test_from_env_overrides() -> None:
    cfg = ChannelConfig.from_env(
        {
            "WACHANNEL_STORE_DIR": "/data/store",
            "WACHANNEL_GROUPS_DIR": "/data/groups",
            "WACHANNEL_CONTAINER_MEDIA_DIR": "/mnt/media/",
            "WACHANNEL_RECONNECT_DELAY_S": "2.5",
            "WACHANNEL_TRANSCRIPTION_MODEL": "small",
            "WACHANNEL_TEXT_EXCERPT_CHARS": "100",
            "WACHANNEL_GROUP_SYNC_INTERVAL_S": "",
            "WACHANNEL_SEND_MAX_ATTEMPTS": "5",
            "WACHANNEL_SEND_RETRY_DELAY_S": "0.5",
            "UNRELATED": "x",
        }
    )
    assert cfg.store_dir == Path("/data/store")
    assert cfg.metadata_path == Path("/data/store/chat_metadata.json")
    assert cfg.groups_dir == Path("/data/groups")
    assert cfg.container_media_dir == "/mnt/media"
    assert cfg.reconnect_delay_s == 2.5
    assert cfg.transcription_model == "small"
    assert cfg.text_excerpt_chars == 100
    assert cfg.group_sync_interval_s == GROUP_SYNC_INTERVAL_S
    assert cfg.send_max_attempts == 5
    assert cfg.send_retry_delay_s == 0.5


def test_from_env_rejects_bad_numbers() -> None:
    with pytest.raises(ValueError):
        ChannelConfig.from_env({"WACHANNEL_RECONNECT_DELAY_S": "soon"})
