from __future__ import annotations

from collections import Counter

from fadebot.domain import (
    CollapseReport,
    ConversationSummary,
    CorruptedUser,
    RepairReport,
    ResetReport,
    SelectionStats,
    SessionDiagnostics,
)
from fadebot.engine import SessionEngine
from fadebot.logging_setup import get_logger, log_event


class Diagnostics:
    """Operator queries and repairs over sessions and history.

    Every repair is idempotent: re-running it on consistent data changes nothing.
    """

    def __init__(self, engine: SessionEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.history = engine.history
        self.max_rounds = engine.max_rounds
        self._logger = get_logger(self.__class__.__name__)

    def scan_corrupted(self) -> list[CorruptedUser]:
        counts = Counter(s.user_id for s in self.store.list_all() if s.is_corrupted(self.max_rounds))
        return [CorruptedUser(user_id=u, corrupted_count=c) for u, c in counts.most_common()]

    def fix_all_corrupted(self) -> RepairReport:
        found = sum(c.corrupted_count for c in self.scan_corrupted())
        fixed = self.store.complete_corrupted(self.max_rounds)
        report = RepairReport(found=found, fixed=len(fixed), affected_users=len({s.user_id for s in fixed}))
        if fixed:
            log_event(
                self._logger,
                "repair-corrupted",
                "Fixed %d corrupted session(s) across %d user(s)",
                report.fixed,
                report.affected_users,
            )
        return report

    def diagnose_user(self, user_id: str) -> SessionDiagnostics:
        sessions = self.store.list_by_user(user_id)
        report = SessionDiagnostics(user_id=user_id, total=len(sessions))
        corrupted_ids: list[int] = []
        for session in sessions:
            if session.complete:
                continue
            report.incomplete += 1
            if session.is_corrupted(self.max_rounds):
                corrupted_ids.append(session.id)
            else:
                report.active += 1
        report.corrupted = len(corrupted_ids)
        if corrupted_ids:
            report.fixed = self.store.set_complete(corrupted_ids)
        return report

    def collapse_user(self, user_id: str) -> CollapseReport:
        kept, closed = self.engine.collapse(user_id)
        return CollapseReport(user_id=user_id, kept_id=kept.id if kept else None, completed_ids=closed)

    def reset_user(self, user_id: str) -> ResetReport:
        sessions = self.store.delete_for_user(user_id)
        turns = self.history.clear(user_id)
        log_event(self._logger, "reset", "Reset %s: %d session(s), %d turn(s) removed", user_id, sessions, turns)
        return ResetReport(user_id=user_id, sessions_deleted=sessions, turns_deleted=turns)

    def clear_history(self, user_id: str) -> int:
        return self.history.clear(user_id)

    def conversation_summary(self, user_id: str, limit: int = 20) -> ConversationSummary:
        turns = self.history.full(user_id, limit)
        active = self.engine.get_active_session(user_id)
        window = []
        round_count = 0
        if active is not None:
            round_count = active.session.round_count
            window = self.engine.current_window(user_id, active.session, round_count + 1)
        return ConversationSummary(
            user_id=user_id,
            has_active_session=active is not None,
            round_count=round_count,
            max_rounds=self.max_rounds,
            total_turns=len(turns),
            user_turns=sum(1 for t in turns if t.is_from_user),
            bot_turns=sum(1 for t in turns if not t.is_from_user),
            last_activity=turns[-1].created_at if turns else None,
            recent_turns=turns[-5:],
            current_cycle=window,
        )

    def selection_stats(self, scope_id: str) -> SelectionStats:
        sessions = self.store.list_by_scope(scope_id)
        return SelectionStats(
            scope_id=scope_id,
            total_selections=len(sessions),
            unique_users=len({s.user_id for s in sessions}),
            last_selection=sessions[0].created_at if sessions else None,
            average_rounds=(sum(s.round_count for s in sessions) / len(sessions)) if sessions else 0.0,
            completed_sessions=sum(1 for s in sessions if s.complete),
        )
