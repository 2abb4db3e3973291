from __future__ import annotations

import pytest

from cirun.config import EngineConfig

from helpers import RecordingSink


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(max_concurrency=4, kill_grace=1.0, poll_interval=0.02)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
