from __future__ import annotations

import threading

from fadebot.diagnostics import Diagnostics
from fadebot.domain import Session

USER = "301122334455667788"
OTHER_USER = "301122334455667789"
SCOPE = "918273645546372819"


def _seed_corruption(store) -> None:
    store.insert(Session(id=1, user_id=USER, scope_id=SCOPE, round_count=3, complete=False))
    store.insert(Session(id=2, user_id=USER, scope_id=SCOPE, round_count=5, complete=False))
    store.insert(Session(id=3, user_id=OTHER_USER, scope_id=SCOPE, round_count=4, complete=False))
    store.insert(Session(id=4, user_id=OTHER_USER, scope_id=SCOPE, round_count=1, complete=False))


def test_scan_and_fix_corrupted_is_idempotent(engine, store):
    _seed_corruption(store)
    diag = Diagnostics(engine)

    scan = {c.user_id: c.corrupted_count for c in diag.scan_corrupted()}
    assert scan == {USER: 2, OTHER_USER: 1}

    first = diag.fix_all_corrupted()
    assert (first.found, first.fixed, first.affected_users) == (3, 3, 2)
    assert diag.scan_corrupted() == []

    snapshot = store.list_all()
    second = diag.fix_all_corrupted()
    assert (second.found, second.fixed, second.affected_users) == (0, 0, 0)
    assert store.list_all() == snapshot
    assert store.get(4).complete is False


def test_diagnose_user_counts_and_fixes(engine, store):
    _seed_corruption(store)
    diag = Diagnostics(engine)

    report = diag.diagnose_user(OTHER_USER)

    assert report.total == 2
    assert report.incomplete == 2
    assert report.active == 1
    assert report.corrupted == 1
    assert report.fixed == 1
    assert store.get(3).complete is True


def test_collapse_keeps_only_newest_open(engine, store, clock):
    for _ in range(3):
        store.create(USER, SCOPE, {})
        clock.advance(minutes=1)
    diag = Diagnostics(engine)

    report = diag.collapse_user(USER)
    assert report.kept_id == 3
    assert sorted(report.completed_ids) == [1, 2]

    again = diag.collapse_user(USER)
    assert again.kept_id == 3
    assert again.completed_ids == []
    assert [s.complete for s in store.list_by_user(USER)] == [False, True, True]


def test_collapse_for_unknown_user_is_empty(engine):
    report = Diagnostics(engine).collapse_user(USER)
    assert report.kept_id is None
    assert report.completed_ids == []


def test_reset_removes_sessions_and_history(engine, store, history):
    engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "hi")
    engine.open_session(OTHER_USER, SCOPE, {})
    diag = Diagnostics(engine)

    report = diag.reset_user(USER)

    assert (report.sessions_deleted, report.turns_deleted) == (1, 2)
    assert store.list_by_user(USER) == []
    assert history.full(USER) == []
    assert len(store.list_by_user(OTHER_USER)) == 1

    assert diag.reset_user(USER).sessions_deleted == 0


def test_clear_history_keeps_sessions(engine, store, history):
    session = engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "hi")
    diag = Diagnostics(engine)

    assert diag.clear_history(USER) == 2
    assert history.full(USER) == []
    assert store.get(session.id).round_count == 1


def test_conversation_summary(engine):
    engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "first")
    engine.advance(USER, "second")

    summary = Diagnostics(engine).conversation_summary(USER)

    assert summary.has_active_session is True
    assert summary.round_count == 2
    assert summary.max_rounds == 3
    assert (summary.total_turns, summary.user_turns, summary.bot_turns) == (4, 2, 2)
    assert len(summary.current_cycle) == 4
    assert summary.recent_turns[0].content == "first"


def test_selection_stats(engine, store, clock):
    engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "hi")
    clock.advance(days=8)
    engine.open_session(OTHER_USER, SCOPE, {})

    stats = Diagnostics(engine).selection_stats(SCOPE)

    assert stats.total_selections == 2
    assert stats.unique_users == 2
    assert stats.last_selection == clock.now
    assert stats.average_rounds == 0.5
    assert stats.completed_sessions == 0


def test_collapse_waits_for_in_flight_turn(engine, store, clock):
    store.create(USER, SCOPE, {})
    clock.advance(minutes=1)
    newest = store.create(USER, SCOPE, {})
    diag = Diagnostics(engine)
    reports = []

    lock = engine._lock_for(USER)
    with lock:
        worker = threading.Thread(target=lambda: reports.append(diag.collapse_user(USER)))
        worker.start()
        worker.join(timeout=0.2)
        assert reports == []
    worker.join(timeout=5)

    assert reports[0].kept_id == newest.id
    assert reports[0].completed_ids == [1]
