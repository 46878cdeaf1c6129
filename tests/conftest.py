from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from fadebot.config import Settings
from fadebot.engine import SessionEngine
from fadebot.generation import TemplateGenerator
from fadebot.store.memory import MemoryHistoryLog, MemorySessionStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 22, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = {"STORE": "memory", "MOCK_LATENCY_MS_RANGE": (0, 0), "GENERATION_TIMEOUT_S": 2.0}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store(clock) -> MemorySessionStore:
    return MemorySessionStore(clock=clock)


@pytest.fixture
def history(clock) -> MemoryHistoryLog:
    return MemoryHistoryLog(clock=clock)


@pytest.fixture
def engine(store, history, settings, clock):
    eng = SessionEngine(store, history, TemplateGenerator(), settings, clock=clock)
    yield eng
    eng.close()
