from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, col, create_engine, select
from sqlmodel import Session as DbSession

from fadebot.domain import Session, Turn, utcnow
from fadebot.errors import ConcurrentUpdateError, StoreError
from fadebot.logging_setup import get_logger
from fadebot.store.base import HistoryLog, SessionStore
from fadebot.store.tables import SessionRow, TurnRow


def open_engine(url: str) -> Engine:
    """Create the engine and make sure both tables exist."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    try:
        engine = create_engine(url, connect_args=connect_args)
        SQLModel.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"cannot open database {url!r}: {exc}") from exc
    return engine


def _utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; everything is written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_session(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        scope_id=row.scope_id,
        round_count=row.round_count,
        complete=row.complete,
        created_at=_utc(row.created_at),
        last_turn_at=_utc(row.last_turn_at) if row.last_turn_at else None,
        context_json=row.context_json,
    )


def _to_turn(row: TurnRow) -> Turn:
    return Turn(
        id=row.id,
        user_id=row.user_id,
        content=row.content,
        is_from_user=row.is_from_user,
        round_label=row.round_label,
        created_at=_utc(row.created_at),
    )


class _SqlBase:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] | None = None) -> None:
        self.engine = engine
        self._clock = clock or utcnow
        self._logger = get_logger(self.__class__.__name__)

    @contextmanager
    def _db(self) -> Iterator[DbSession]:
        try:
            with DbSession(self.engine) as db:
                yield db
        except SQLAlchemyError as exc:
            self._logger.error("Database error: %s", exc)
            raise StoreError(str(exc)) from exc

    def _now(self) -> datetime:
        return _utc(self._clock())


class SqlSessionStore(_SqlBase, SessionStore):
    """Session store over the ``engagement_sessions`` table."""

    def create(self, user_id: str, scope_id: str, context: dict[str, Any]) -> Session:
        row = SessionRow(
            user_id=user_id,
            scope_id=scope_id,
            created_at=self._now(),
            context_json=json.dumps(context, ensure_ascii=False, default=str),
        )
        with self._db() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_session(row)

    def get(self, session_id: int) -> Session | None:
        with self._db() as db:
            row = db.get(SessionRow, session_id)
            return _to_session(row) if row else None

    def _list(self, *conditions) -> list[Session]:
        stmt = select(SessionRow)
        for condition in conditions:
            stmt = stmt.where(condition)
        stmt = stmt.order_by(col(SessionRow.created_at).desc(), col(SessionRow.id).desc())
        with self._db() as db:
            return [_to_session(r) for r in db.exec(stmt).all()]

    def list_by_user(self, user_id: str) -> list[Session]:
        return self._list(SessionRow.user_id == user_id)

    def list_by_scope(self, scope_id: str) -> list[Session]:
        return self._list(SessionRow.scope_id == scope_id)

    def list_all(self) -> list[Session]:
        return self._list()

    def latest_for_scope(self, scope_id: str) -> Session | None:
        stmt = (
            select(SessionRow)
            .where(SessionRow.scope_id == scope_id)
            .order_by(col(SessionRow.created_at).desc(), col(SessionRow.id).desc())
            .limit(1)
        )
        with self._db() as db:
            row = db.exec(stmt).first()
            return _to_session(row) if row else None

    def set_complete(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with self._db() as db:
            rows = db.exec(
                select(SessionRow).where(col(SessionRow.id).in_(ids), col(SessionRow.complete).is_(False))
            ).all()
            for row in rows:
                row.complete = True
                db.add(row)
            db.commit()
            return len(rows)

    def update(
        self,
        session_id: int,
        *,
        round_count: int,
        complete: bool,
        last_turn_at: datetime,
        expected_round_count: int | None = None,
    ) -> Session:
        with self._db() as db:
            # row lock on backends that support it; SQLite serializes writers anyway
            row = db.exec(select(SessionRow).where(SessionRow.id == session_id).with_for_update()).first()
            if row is None:
                raise StoreError(f"no session with id {session_id}")
            if expected_round_count is not None and row.round_count != expected_round_count:
                db.rollback()
                raise ConcurrentUpdateError(
                    f"session {session_id} is at round {row.round_count}, expected {expected_round_count}"
                )
            row.round_count = round_count
            row.complete = complete
            row.last_turn_at = _utc(last_turn_at)
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_session(row)

    def complete_corrupted(self, max_rounds: int) -> list[Session]:
        with self._db() as db:
            rows = db.exec(
                select(SessionRow).where(
                    SessionRow.round_count >= max_rounds, col(SessionRow.complete).is_(False)
                )
            ).all()
            for row in rows:
                row.complete = True
                db.add(row)
            db.commit()
            for row in rows:
                db.refresh(row)
            return [_to_session(r) for r in rows]

    def delete_for_user(self, user_id: str) -> int:
        with self._db() as db:
            rows = db.exec(select(SessionRow).where(SessionRow.user_id == user_id)).all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)

    def ping(self) -> bool:
        try:
            with DbSession(self.engine) as db:
                db.connection().execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            self._logger.warning("Database ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self.engine.dispose()


class SqlHistoryLog(_SqlBase, HistoryLog):
    """Turn log over the ``conversation_turns`` table."""

    def append(self, user_id: str, content: str, is_from_user: bool, round_label: int) -> Turn:
        row = TurnRow(
            user_id=user_id,
            content=content,
            is_from_user=is_from_user,
            round_label=round_label,
            created_at=self._now(),
        )
        with self._db() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_turn(row)

    def window(self, user_id: str, count: int, since: datetime | None = None) -> list[Turn]:
        if count <= 0:
            return []
        stmt = select(TurnRow).where(TurnRow.user_id == user_id)
        if since is not None:
            stmt = stmt.where(TurnRow.created_at >= _utc(since))
        stmt = stmt.order_by(col(TurnRow.created_at).desc(), col(TurnRow.id).desc()).limit(count)
        with self._db() as db:
            rows = db.exec(stmt).all()
        return [_to_turn(r) for r in reversed(rows)]

    def full(self, user_id: str, limit: int = 20) -> list[Turn]:
        return self.window(user_id, limit)

    def clear(self, user_id: str) -> int:
        with self._db() as db:
            rows = db.exec(select(TurnRow).where(TurnRow.user_id == user_id)).all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)
