from __future__ import annotations

import pytest
from fakes import FakeSessionFactory

from wachannel.config import ChannelConfig


@pytest.fixture
def config(tmp_path) -> ChannelConfig:
    return ChannelConfig(
        store_dir=tmp_path / "store",
        groups_dir=tmp_path / "groups",
        fallback_media_dir=tmp_path / "tmp",
        reconnect_delay_s=0.01,
        send_retry_delay_s=0.01,
        transcription_timeout_s=5.0,
    )


@pytest.fixture
def factory() -> FakeSessionFactory:
    return FakeSessionFactory()
