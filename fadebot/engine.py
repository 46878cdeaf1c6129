from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any

from fadebot.config import Settings
from fadebot.domain import ActiveSession, AdvanceOutcome, AdvanceResult, Session, Turn, utcnow
from fadebot.errors import StoreError
from fadebot.generation import MessageGenerator
from fadebot.logging_setup import get_logger, log_event
from fadebot.store.base import HistoryLog, SessionStore
from fadebot.validation import validate_content, validate_user_id


class SessionEngine:
    """Owns the NONE -> ACTIVE -> COMPLETE lifecycle of engagement sessions.

    Guarantees, per user:

    - at most one open session; older open rows are closed on every lookup
    - a row whose round count reached ``MAX_ROUNDS`` is never treated as active
    - each accepted inbound turn moves the round count forward by exactly one

    Calls for the same user are serialized with a per-user lock. Round state is
    persisted before the reply is handed back, so a crash after the write never
    replays a round.
    """

    def __init__(
        self,
        store: SessionStore,
        history: HistoryLog,
        generator: MessageGenerator,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.history = history
        self.generator = generator
        self.settings = settings
        self.max_rounds = settings.MAX_ROUNDS
        self._clock = clock or utcnow
        self._logger = get_logger(self.__class__.__name__)
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="fadebot-generate")
        # entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # Lifecycle -----------------------------------------------------------------
    def open_session(self, user_id: str, scope_id: str, context: dict[str, Any]) -> Session:
        validate_user_id(user_id, self.settings.USER_ID_PATTERN)
        with self._lock_for(user_id):
            session = self.store.create(user_id, scope_id, context)
            self.reconcile(user_id)
        log_event(self._logger, "session-opened", "Opened session %d for %s in %s", session.id, user_id, scope_id)
        return session

    def reconcile(self, user_id: str) -> Session | None:
        """Close every open session except the newest and return the newest."""
        return self._collapse(user_id)[0]

    def collapse(self, user_id: str) -> tuple[Session | None, list[int]]:
        """Locked reconcile for operators; returns the kept row and the ids it closed."""
        with self._lock_for(user_id):
            return self._collapse(user_id)

    def _collapse(self, user_id: str) -> tuple[Session | None, list[int]]:
        sessions = self.store.list_by_user(user_id)
        if not sessions:
            return None, []
        newest, older = sessions[0], sessions[1:]
        stale_ids = [s.id for s in older if not s.complete]
        if stale_ids:
            closed = self.store.set_complete(stale_ids)
            log_event(
                self._logger,
                "repair-collapse",
                "Closed %d older open session(s) for %s: %s",
                closed,
                user_id,
                stale_ids,
                level=logging.WARNING,
            )
        return newest, stale_ids

    def get_active_session(self, user_id: str) -> ActiveSession | None:
        return self._resolve(user_id)[1]

    def _resolve(self, user_id: str) -> tuple[Session | None, ActiveSession | None]:
        self.reconcile(user_id)
        # re-read after the repair so the decision is made on stored state
        sessions = self.store.list_by_user(user_id)
        if not sessions:
            return None, None
        latest = sessions[0]
        if latest.complete:
            return latest, None
        if latest.round_count >= self.max_rounds:
            self.store.set_complete([latest.id])
            log_event(
                self._logger,
                "repair-corrupted",
                "Session %d for %s reached %d/%d rounds without completing; marked complete",
                latest.id,
                user_id,
                latest.round_count,
                self.max_rounds,
                level=logging.WARNING,
            )
            return latest.model_copy(update={"complete": True}), None
        return latest, ActiveSession(session=latest, context=latest.load_context())

    # Rounds ----------------------------------------------------------------------
    def current_window(self, user_id: str, session: Session, next_round: int) -> list[Turn]:
        """Turns of the running cycle only: two per completed round, oldest-first."""
        count = (next_round - 1) * 2
        if count <= 0:
            return []
        return self.history.window(user_id, count, since=session.created_at)

    def compose(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:
        """Run the generator within the timeout; fall back on timeout or failure."""
        future = self._executor.submit(self.generator.generate, inbound_text, round_number, context, window)
        try:
            text = future.result(timeout=self.settings.GENERATION_TIMEOUT_S)
            if text and text.strip():
                return text.strip()
            self._logger.warning("Generator returned empty text for round %d, using fallback", round_number)
        except FutureTimeout:
            future.cancel()
            self._logger.warning(
                "Generation timed out after %.1fs for round %d, using fallback",
                self.settings.GENERATION_TIMEOUT_S,
                round_number,
            )
        except Exception as exc:
            self._logger.warning("Generation failed for round %d (%s), using fallback", round_number, exc)
        return self.generator.fallback(inbound_text, round_number, context, window)

    def advance(self, user_id: str, inbound_text: str) -> AdvanceResult:
        user_id = validate_user_id(user_id, self.settings.USER_ID_PATTERN)
        content = validate_content(inbound_text, self.settings.MAX_MESSAGE_LENGTH)

        with self._lock_for(user_id):
            latest, active = self._resolve(user_id)
            if active is None:
                if latest is None:
                    self._logger.debug("No session for %s", user_id)
                    return AdvanceResult(outcome=AdvanceOutcome.NO_ACTIVE_SESSION)
                self._logger.debug("Session %d for %s is exhausted", latest.id, user_id)
                return AdvanceResult(outcome=AdvanceOutcome.LIMIT_EXCEEDED, session=latest)

            session = active.session
            next_round = session.round_count + 1
            if next_round > self.max_rounds:
                return AdvanceResult(outcome=AdvanceOutcome.LIMIT_EXCEEDED, session=session)

            window = self.current_window(user_id, session, next_round)
            reply = self.compose(content, next_round, active.context, window)

            complete = next_round >= self.max_rounds
            updated = self.store.update(
                session.id,
                round_count=next_round,
                complete=complete,
                last_turn_at=self._clock(),
                expected_round_count=session.round_count,
            )
            self._record_exchange(user_id, content, reply, next_round)

        log_event(
            self._logger,
            "round-advanced",
            "Session %d for %s advanced to round %d/%d%s",
            updated.id,
            user_id,
            next_round,
            self.max_rounds,
            " (complete)" if complete else "",
        )
        return AdvanceResult(
            outcome=AdvanceOutcome.REPLIED,
            text=reply,
            round=next_round,
            session_complete=complete,
            session=updated,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # Internals -----------------------------------------------------------------
    def _record_exchange(self, user_id: str, inbound: str, reply: str, round_number: int) -> None:
        # history is observability only; a failed append never fails the round
        try:
            self.history.append(user_id, inbound, True, round_number)
            self.history.append(user_id, reply, False, round_number)
        except StoreError as exc:
            self._logger.warning("Could not log exchange for %s round %d: %s", user_id, round_number, exc)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock
