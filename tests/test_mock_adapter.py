from fadebot.adapters.mock import MockAdapter
from fadebot.config import Settings
from fadebot.domain import PresenceStatus


def test_loads_bundled_example_data():
    adapter = MockAdapter(Settings(MOCK_LATENCY_MS_RANGE=(0, 0)))
    scopes = {s.id: s.name for s in adapter.list_scopes()}
    assert scopes["918273645546372819"] == "Signal Lost"

    members = {m.username: m for m in adapter.list_members("918273645546372819")}
    assert members["quietstatic"].status == PresenceStatus.IDLE
    assert "The Marked" in members["nightjar"].tags
    assert adapter.get_member("918273645546372819", "999") is None


def test_failure_injection_is_deterministic():
    settings = Settings(MOCK_LATENCY_MS_RANGE=(0, 0), MOCK_DELIVERY_FAILURE_RATE=0.5, SEED=3)
    first, second = MockAdapter(settings), MockAdapter(settings)
    outcomes_a = [first.send("301122334455667788", f"m{i}").ok for i in range(20)]
    outcomes_b = [second.send("301122334455667788", f"m{i}").ok for i in range(20)]
    assert outcomes_a == outcomes_b
    assert True in outcomes_a and False in outcomes_a
    assert len(first.outbox) == outcomes_a.count(True)


def test_blocked_user_never_receives():
    adapter = MockAdapter(Settings(MOCK_LATENCY_MS_RANGE=(0, 0)))
    adapter.block("301122334455667788")
    result = adapter.send("301122334455667788", "hello")
    assert result.ok is False
    assert adapter.sent_to("301122334455667788") == []
