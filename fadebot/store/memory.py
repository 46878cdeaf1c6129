from __future__ import annotations

import itertools
import json
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from fadebot.domain import Session, Turn, utcnow
from fadebot.errors import ConcurrentUpdateError, StoreError
from fadebot.store.base import HistoryLog, SessionStore, newest_first


class MemorySessionStore(SessionStore):
    """In-process session store.

    - Ids are assigned from a monotonic counter
    - All operations hold a single lock, so reads never see half-applied writes
    - ``clock`` stamps ``created_at`` so tests can control time
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._rows: dict[int, Session] = {}

    # Public API -----------------------------------------------------------------
    def create(self, user_id: str, scope_id: str, context: dict[str, Any]) -> Session:
        with self._lock:
            session = Session(
                id=next(self._ids),
                user_id=user_id,
                scope_id=scope_id,
                created_at=self._clock(),
                context_json=json.dumps(context, ensure_ascii=False, default=str),
            )
            self._rows[session.id] = session
            return session.model_copy()

    def insert(self, session: Session) -> Session:
        """Store a fully-formed row as-is (fixtures and imports)."""
        with self._lock:
            if session.id in self._rows:
                raise StoreError(f"session {session.id} already exists")
            self._rows[session.id] = session.model_copy()
            # keep the counter ahead of imported ids
            self._ids = itertools.count(max(self._rows) + 1)
            return session.model_copy()

    def get(self, session_id: int) -> Session | None:
        with self._lock:
            row = self._rows.get(session_id)
            return row.model_copy() if row else None

    def list_by_user(self, user_id: str) -> list[Session]:
        with self._lock:
            return [s.model_copy() for s in newest_first([s for s in self._rows.values() if s.user_id == user_id])]

    def list_by_scope(self, scope_id: str) -> list[Session]:
        with self._lock:
            return [s.model_copy() for s in newest_first([s for s in self._rows.values() if s.scope_id == scope_id])]

    def list_all(self) -> list[Session]:
        with self._lock:
            return [s.model_copy() for s in newest_first(list(self._rows.values()))]

    def latest_for_scope(self, scope_id: str) -> Session | None:
        rows = self.list_by_scope(scope_id)
        return rows[0] if rows else None

    def set_complete(self, ids: Iterable[int]) -> int:
        changed = 0
        with self._lock:
            for session_id in ids:
                row = self._rows.get(session_id)
                if row is not None and not row.complete:
                    self._rows[session_id] = row.model_copy(update={"complete": True})
                    changed += 1
        return changed

    def update(
        self,
        session_id: int,
        *,
        round_count: int,
        complete: bool,
        last_turn_at: datetime,
        expected_round_count: int | None = None,
    ) -> Session:
        with self._lock:
            row = self._rows.get(session_id)
            if row is None:
                raise StoreError(f"no session with id {session_id}")
            if expected_round_count is not None and row.round_count != expected_round_count:
                raise ConcurrentUpdateError(
                    f"session {session_id} is at round {row.round_count}, expected {expected_round_count}"
                )
            updated = row.model_copy(
                update={"round_count": round_count, "complete": complete, "last_turn_at": last_turn_at}
            )
            self._rows[session_id] = updated
            return updated.model_copy()

    def complete_corrupted(self, max_rounds: int) -> list[Session]:
        fixed: list[Session] = []
        with self._lock:
            for session_id, row in self._rows.items():
                if row.is_corrupted(max_rounds):
                    self._rows[session_id] = row.model_copy(update={"complete": True})
                    fixed.append(self._rows[session_id].model_copy())
        return fixed

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, row in self._rows.items() if row.user_id == user_id]
            for sid in doomed:
                del self._rows[sid]
            return len(doomed)


class MemoryHistoryLog(HistoryLog):
    """In-process turn log kept in insertion order."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._turns: list[Turn] = []

    def append(self, user_id: str, content: str, is_from_user: bool, round_label: int) -> Turn:
        with self._lock:
            turn = Turn(
                id=next(self._ids),
                user_id=user_id,
                content=content,
                is_from_user=is_from_user,
                round_label=round_label,
                created_at=self._clock(),
            )
            self._turns.append(turn)
            return turn

    def window(self, user_id: str, count: int, since: datetime | None = None) -> list[Turn]:
        if count <= 0:
            return []
        with self._lock:
            rows = [
                t for t in self._turns if t.user_id == user_id and (since is None or t.created_at >= since)
            ]
        return rows[-count:]

    def full(self, user_id: str, limit: int = 20) -> list[Turn]:
        return self.window(user_id, limit)

    def clear(self, user_id: str) -> int:
        with self._lock:
            before = len(self._turns)
            self._turns = [t for t in self._turns if t.user_id != user_id]
            return before - len(self._turns)
