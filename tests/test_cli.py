import json

import pytest
from typer.testing import CliRunner

from fadebot.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    # the root handler would otherwise bind to the runner's captured stdout
    monkeypatch.setattr("fadebot.cli.setup_logging", lambda **kwargs: None)


def test_stats_for_fresh_scope(monkeypatch):
    monkeypatch.setenv("STORE", "memory")
    result = runner.invoke(app, ["stats", "--scope-id", "918273645546372819"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["total_selections"] == 0


def test_open_session_with_sql_store(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    opened = runner.invoke(
        app, ["open-session", "--user-id", "301122334455667788", "--scope-id", "918273645546372819"]
    )
    assert opened.exit_code == 0, opened.output

    replied = runner.invoke(app, ["reply", "--user-id", "301122334455667788", "--text", "hello?"])
    assert replied.exit_code == 0, replied.output
    assert '"status": "replied"' in replied.output


def test_schedule_is_opt_in(monkeypatch):
    monkeypatch.setenv("STORE", "memory")
    result = runner.invoke(app, ["run-schedule"])
    assert result.exit_code == 0
    assert "Schedule disabled" in result.output
