from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from pydantic import BaseModel

from fadebot.config import load_settings
from fadebot.errors import FadebotError
from fadebot.logging_setup import setup_logging
from fadebot.runtime import BotContext, build_context
from fadebot.scheduler import run_schedule

app = typer.Typer(help="FadeBot - engagement session CLI")


@contextmanager
def _bot() -> Iterator[BotContext]:
    try:
        ctx = build_context(load_settings())
    except FadebotError as exc:
        raise typer.BadParameter(str(exc)) from exc
    with ctx:
        yield ctx


def _echo(payload: BaseModel | list[BaseModel] | dict) -> None:
    if isinstance(payload, BaseModel):
        typer.echo(payload.model_dump_json(indent=2))
    elif isinstance(payload, list):
        typer.echo(json.dumps([p.model_dump(mode="json") for p in payload], indent=2, ensure_ascii=False))
    else:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


@app.callback()
def main(json_logs: bool = typer.Option(False, "--json-logs", help="Enable JSON logs")):
    setup_logging(json_logs=json_logs, level=load_settings().LOG_LEVEL)


@app.command("select-once")
def select_once(scope: str | None = typer.Option(None, "--scope", help="Only process this scope")):
    """Run one selection pass over every scope (or just one)."""
    with _bot() as ctx:
        if scope is None:
            _echo(ctx.controller.run_selection())
        elif not ctx.gate.is_active_window():
            typer.echo("Outside the activity window.")
        else:
            _echo(ctx.controller.process_scope(scope))


@app.command("run-schedule")
def run_schedule_cmd(
    cron: str | None = typer.Option(None, "--cron", help="crontab schedule like '0 * * * *'"),
    enable: bool = typer.Option(False, "--enable"),
):
    with _bot() as ctx:
        run_schedule(ctx.controller, settings=ctx.settings, cron=cron, enable=enable)


@app.command("open-session")
def open_session(
    user_id: str = typer.Option(..., "--user-id"),
    scope_id: str = typer.Option(..., "--scope-id"),
):
    """Open a session by hand, bypassing the gate and candidate filter."""
    with _bot() as ctx:
        try:
            session = ctx.engine.open_session(user_id, scope_id, {"user_id": user_id, "scope_id": scope_id})
        except FadebotError as exc:
            raise typer.BadParameter(str(exc)) from exc
        _echo(session)


@app.command()
def reply(user_id: str = typer.Option(..., "--user-id"), text: str = typer.Option(..., "--text")):
    """Feed one inbound message through the engine and deliver the answer."""
    with _bot() as ctx:
        _echo(ctx.controller.handle_inbound(user_id, text))


@app.command("check-corrupted")
def check_corrupted():
    with _bot() as ctx:
        _echo(ctx.diagnostics.scan_corrupted())


@app.command("fix-all-corrupted")
def fix_all_corrupted():
    with _bot() as ctx:
        _echo(ctx.diagnostics.fix_all_corrupted())


@app.command("fix-user")
def fix_user(user_id: str = typer.Option(..., "--user-id")):
    """Diagnose one user's sessions and close any corrupted ones."""
    with _bot() as ctx:
        _echo(ctx.diagnostics.diagnose_user(user_id))


@app.command("cleanup-user")
def cleanup_user(user_id: str = typer.Option(..., "--user-id")):
    """Keep only the newest session open for a user."""
    with _bot() as ctx:
        _echo(ctx.diagnostics.collapse_user(user_id))


@app.command("reset-user")
def reset_user(user_id: str = typer.Option(..., "--user-id")):
    with _bot() as ctx:
        _echo(ctx.diagnostics.reset_user(user_id))


@app.command("clear-history")
def clear_history(user_id: str = typer.Option(..., "--user-id")):
    with _bot() as ctx:
        _echo({"user_id": user_id, "turns_deleted": ctx.diagnostics.clear_history(user_id)})


@app.command()
def summary(user_id: str = typer.Option(..., "--user-id"), limit: int = typer.Option(20, "--limit")):
    with _bot() as ctx:
        _echo(ctx.diagnostics.conversation_summary(user_id, limit))


@app.command()
def stats(scope_id: str = typer.Option(..., "--scope-id")):
    with _bot() as ctx:
        _echo(ctx.diagnostics.selection_stats(scope_id))


@app.command()
def serve():
    """Run the HTTP surface with the hourly scheduler attached."""
    from fadebot.web import main as web_main

    web_main()
