import sys
from pathlib import Path
from typing import Any

import pytest
from loguru import logger

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tests.utils.factories import FakeClock
from tracemind.config.manager import ConfigManager


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def log_records():
    records: list[dict[str, Any]] = []

    def sink(message):
        records.append(message.record)

    handler_id = logger.add(sink, level="DEBUG")
    try:
        yield records
    finally:
        logger.remove(handler_id)


@pytest.fixture(autouse=True)
def reset_config_manager(monkeypatch):
    for key in ("OPENAI_API_KEY", "TRACEMIND_DATABASE_URL", "TRACE_INTENT_LOG"):
        monkeypatch.delenv(key, raising=False)
    ConfigManager._instance = None
    yield
    ConfigManager._instance = None
