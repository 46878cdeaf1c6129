from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from fadebot.domain import Session, Turn


class SessionStore(ABC):
    """Persistence interface for session records.

    ``list_by_user`` and every other listing return newest-first, ordered by
    ``created_at`` and then by id.
    """

    @abstractmethod
    def create(self, user_id: str, scope_id: str, context: dict[str, Any]) -> Session:  # pragma: no cover - interface
        ...

    @abstractmethod
    def get(self, session_id: int) -> Session | None:  # pragma: no cover - interface
        ...

    @abstractmethod
    def list_by_user(self, user_id: str) -> list[Session]:  # pragma: no cover - interface
        ...

    @abstractmethod
    def list_by_scope(self, scope_id: str) -> list[Session]:  # pragma: no cover - interface
        ...

    @abstractmethod
    def list_all(self) -> list[Session]:  # pragma: no cover - interface
        ...

    @abstractmethod
    def latest_for_scope(self, scope_id: str) -> Session | None:  # pragma: no cover - interface
        ...

    @abstractmethod
    def set_complete(self, ids: Iterable[int]) -> int:  # pragma: no cover - interface
        """Force ``complete = true`` on the given rows; returns rows changed."""

    @abstractmethod
    def update(
        self,
        session_id: int,
        *,
        round_count: int,
        complete: bool,
        last_turn_at: datetime,
        expected_round_count: int | None = None,
    ) -> Session:  # pragma: no cover - interface
        """Write round state; with ``expected_round_count`` the write is conditional."""

    @abstractmethod
    def complete_corrupted(self, max_rounds: int) -> list[Session]:  # pragma: no cover - interface
        """Close every open row with ``round_count >= max_rounds``; returns the rows fixed."""

    @abstractmethod
    def delete_for_user(self, user_id: str) -> int:  # pragma: no cover - interface
        ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None


class HistoryLog(ABC):
    """Append-only log of exchanged turns."""

    @abstractmethod
    def append(self, user_id: str, content: str, is_from_user: bool, round_label: int) -> Turn:  # pragma: no cover
        ...

    @abstractmethod
    def window(self, user_id: str, count: int, since: datetime | None = None) -> list[Turn]:  # pragma: no cover
        """Newest ``count`` turns (at or after ``since``) returned oldest-first."""

    @abstractmethod
    def full(self, user_id: str, limit: int = 20) -> list[Turn]:  # pragma: no cover - interface
        """Newest ``limit`` turns regardless of session, oldest-first."""

    @abstractmethod
    def clear(self, user_id: str) -> int:  # pragma: no cover - interface
        ...


def newest_first(sessions: Sequence[Session]) -> list[Session]:
    return sorted(sessions, key=lambda s: (s.created_at, s.id), reverse=True)
