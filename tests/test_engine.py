from __future__ import annotations

import gc
import threading
import time

import pytest

from fadebot.config import Settings
from fadebot.domain import AdvanceOutcome, Session
from fadebot.engine import SessionEngine
from fadebot.errors import ConcurrentUpdateError, GenerationError, InvalidInput, StoreError
from fadebot.generation import TemplateGenerator
from fadebot.store.memory import MemoryHistoryLog

USER = "301122334455667788"
SCOPE = "918273645546372819"


class RecordingGenerator(TemplateGenerator):
    def __init__(self) -> None:
        self.calls: list[tuple[int, list[str]]] = []

    def generate(self, inbound_text, round_number, context, window):
        self.calls.append((round_number, [t.content for t in window]))
        return f"reply {round_number} to {inbound_text}"


class FailingGenerator(TemplateGenerator):
    def generate(self, inbound_text, round_number, context, window):
        raise GenerationError("provider unavailable")


class SlowGenerator(TemplateGenerator):
    def generate(self, inbound_text, round_number, context, window):
        time.sleep(0.5)
        return "too late"


class BrokenHistory(MemoryHistoryLog):
    def append(self, user_id, content, is_from_user, round_label):
        raise StoreError("disk full")


def _settings(**overrides) -> Settings:
    values = {"STORE": "memory", "MOCK_LATENCY_MS_RANGE": (0, 0)}
    values.update(overrides)
    return Settings(**values)


def test_three_round_session_then_limit(engine, store, history):
    session = engine.open_session(USER, SCOPE, {"username": "nightjar"})

    rounds = [engine.advance(USER, f"message {i}") for i in range(1, 4)]
    assert [r.round for r in rounds] == [1, 2, 3]
    assert [r.session_complete for r in rounds] == [False, False, True]
    assert all(r.replied and r.text for r in rounds)

    stored = store.get(session.id)
    assert stored.round_count == 3
    assert stored.complete is True
    assert len(history.full(USER)) == 6

    fourth = engine.advance(USER, "still there?")
    assert fourth.outcome == AdvanceOutcome.LIMIT_EXCEEDED
    assert store.get(session.id).round_count == 3
    assert len(history.full(USER)) == 6


def test_advance_without_session_reports_no_active_session(engine, history):
    result = engine.advance(USER, "hello?")
    assert result.outcome == AdvanceOutcome.NO_ACTIVE_SESSION
    assert result.text is None
    assert history.full(USER) == []


def test_two_open_sessions_collapse_to_newest(engine, store, clock):
    older = store.create(USER, SCOPE, {})
    clock.advance(minutes=5)
    newer = store.create(USER, SCOPE, {})

    active = engine.get_active_session(USER)

    assert active is not None
    assert active.session.id == newer.id
    assert store.get(older.id).complete is True
    assert store.get(newer.id).complete is False
    assert sum(1 for s in store.list_by_user(USER) if not s.complete) == 1


def test_corrupted_session_is_repaired_and_not_active(engine, store):
    store.insert(Session(id=7, user_id=USER, scope_id=SCOPE, round_count=3, complete=False))

    assert engine.get_active_session(USER) is None
    assert store.get(7).complete is True

    result = engine.advance(USER, "hi")
    assert result.outcome == AdvanceOutcome.LIMIT_EXCEEDED
    assert store.get(7).round_count == 3


def test_completed_session_is_left_untouched(engine, store, history):
    store.insert(Session(id=3, user_id=USER, scope_id=SCOPE, round_count=3, complete=True))
    before = store.get(3)

    result = engine.advance(USER, "anyone?")

    assert result.outcome == AdvanceOutcome.LIMIT_EXCEEDED
    assert store.get(3) == before
    assert history.full(USER) == []


def test_each_round_increments_by_exactly_one(engine, store):
    session = engine.open_session(USER, SCOPE, {})
    for expected in (1, 2):
        engine.advance(USER, "ping")
        assert store.get(session.id).round_count == expected


def test_window_covers_current_cycle_only(store, history, settings, clock):
    generator = RecordingGenerator()
    engine = SessionEngine(store, history, generator, settings, clock=clock)
    try:
        engine.open_session(USER, SCOPE, {})
        for i in range(3):
            engine.advance(USER, f"first-{i}")

        clock.advance(days=8)
        engine.open_session(USER, SCOPE, {})
        generator.calls.clear()
        engine.advance(USER, "second-0")
        engine.advance(USER, "second-1")
        engine.advance(USER, "second-2")
    finally:
        engine.close()

    assert [len(window) for _, window in generator.calls] == [0, 2, 4]
    last_window = generator.calls[-1][1]
    assert last_window == ["second-0", "reply 1 to second-0", "second-1", "reply 2 to second-1"]
    assert not any(text.startswith("first-") for _, window in generator.calls for text in window)


def test_unreadable_context_degrades_to_empty(engine, store):
    store.insert(Session(id=11, user_id=USER, scope_id=SCOPE, context_json="{not json"))

    active = engine.get_active_session(USER)
    assert active is not None
    assert active.context == {}
    assert engine.advance(USER, "hi").round == 1


@pytest.mark.parametrize(
    "user_id, text",
    [
        ("not-a-snowflake", "hi"),
        ("", "hi"),
        (USER, ""),
        (USER, "   \x00  "),
        (USER, "x" * 2001),
    ],
)
def test_invalid_input_is_rejected_before_any_mutation(engine, store, history, user_id, text):
    session = engine.open_session(USER, SCOPE, {})

    with pytest.raises(InvalidInput):
        engine.advance(user_id, text)

    assert store.get(session.id).round_count == 0
    assert history.full(USER) == []


def test_content_is_sanitized_before_logging(engine, history):
    engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "  hel\x00lo  ")
    assert history.full(USER)[0].content == "hello"


def test_generator_failure_uses_level_fallback(store, history, settings, clock):
    engine = SessionEngine(store, history, FailingGenerator(), settings, clock=clock)
    try:
        engine.open_session(USER, SCOPE, {})
        result = engine.advance(USER, "who are you")
    finally:
        engine.close()

    assert result.replied
    assert result.text in TemplateGenerator.LEVEL_POOLS[1]
    assert result.round == 1


def test_generator_timeout_uses_fallback(store, history, clock):
    settings = _settings(GENERATION_TIMEOUT_S=0.05)
    engine = SessionEngine(store, history, SlowGenerator(), settings, clock=clock)
    try:
        engine.open_session(USER, SCOPE, {})
        result = engine.advance(USER, "hello")
    finally:
        engine.close()

    assert result.text != "too late"
    assert result.text in TemplateGenerator.LEVEL_POOLS[1]


def test_history_failure_does_not_fail_the_round(store, settings, clock):
    engine = SessionEngine(store, BrokenHistory(clock=clock), TemplateGenerator(), settings, clock=clock)
    try:
        session = engine.open_session(USER, SCOPE, {})
        result = engine.advance(USER, "hello")
    finally:
        engine.close()

    assert result.replied
    assert store.get(session.id).round_count == 1


def test_conditional_update_rejects_stale_round(store, clock):
    session = store.create(USER, SCOPE, {})
    store.update(session.id, round_count=1, complete=False, last_turn_at=clock(), expected_round_count=0)

    with pytest.raises(ConcurrentUpdateError):
        store.update(session.id, round_count=1, complete=False, last_turn_at=clock(), expected_round_count=0)


def test_open_session_closes_previous_open_session(engine, store, clock):
    first = engine.open_session(USER, SCOPE, {})
    clock.advance(seconds=1)
    second = engine.open_session(USER, SCOPE, {})

    assert store.get(first.id).complete is True
    assert engine.get_active_session(USER).session.id == second.id


class PausingGenerator(TemplateGenerator):
    def generate(self, inbound_text, round_number, context, window):
        time.sleep(0.05)
        return f"reply {round_number}"


def test_concurrent_turns_never_exceed_the_round_limit(store, history, settings, clock):
    engine = SessionEngine(store, history, PausingGenerator(), settings, clock=clock)
    session = engine.open_session(USER, SCOPE, {})
    results = []
    start = threading.Barrier(5)

    def send(i):
        start.wait()
        results.append(engine.advance(USER, f"burst {i}"))

    threads = [threading.Thread(target=send, args=(i,)) for i in range(5)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
    finally:
        engine.close()

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == ["limit_exceeded", "limit_exceeded", "replied", "replied", "replied"]
    assert sorted(r.round for r in results if r.replied) == [1, 2, 3]
    stored = store.get(session.id)
    assert stored.round_count == settings.MAX_ROUNDS
    assert stored.complete is True
    assert len(history.full(USER)) == 2 * settings.MAX_ROUNDS


def test_user_locks_are_released_after_use(engine):
    engine.open_session(USER, SCOPE, {})
    engine.advance(USER, "hi")
    gc.collect()
    assert USER not in engine._locks
