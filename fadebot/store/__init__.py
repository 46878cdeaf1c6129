from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fadebot.config import Settings
from fadebot.errors import ConfigurationError

from .base import HistoryLog, SessionStore
from .memory import MemoryHistoryLog, MemorySessionStore


def build_stores(
    settings: Settings, clock: Callable[[], datetime] | None = None
) -> tuple[SessionStore, HistoryLog]:
    if settings.STORE == "memory":
        return MemorySessionStore(clock=clock), MemoryHistoryLog(clock=clock)
    if settings.STORE == "sql":
        # sqlmodel is only imported when a database is actually configured
        from .sql import SqlHistoryLog, SqlSessionStore, open_engine

        engine = open_engine(settings.DATABASE_URL)
        return SqlSessionStore(engine, clock=clock), SqlHistoryLog(engine, clock=clock)
    raise ConfigurationError(f"Unknown STORE {settings.STORE!r}. Choose 'sql' or 'memory'.")


__all__ = [
    "HistoryLog",
    "SessionStore",
    "MemoryHistoryLog",
    "MemorySessionStore",
    "build_stores",
]
