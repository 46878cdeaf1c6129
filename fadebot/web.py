from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fadebot.config import load_settings
from fadebot.domain import (
    CollapseReport,
    ConversationSummary,
    CorruptedUser,
    InboundOutcome,
    InboundStatus,
    RepairReport,
    ResetReport,
    SelectionOutcome,
    SelectionStats,
    SessionDiagnostics,
)
from fadebot.errors import StoreError
from fadebot.logging_setup import get_logger, setup_logging
from fadebot.runtime import BotContext, build_context
from fadebot.scheduler import start_scheduler

logger = get_logger("web")


class InboundRequest(BaseModel):
    user_id: str
    content: str


class HealthResponse(BaseModel):
    status: str
    uptime_s: int
    store: str
    testing_mode: bool
    required_tag: str
    max_rounds: int
    night_hours: str


def create_app(ctx: BotContext, *, run_scheduler: bool = False) -> FastAPI:
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = start_scheduler(ctx.controller, settings=ctx.settings) if run_scheduler else None
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        logger.info("Shutting down application...")
        ctx.close()

    app = FastAPI(title="FadeBot", lifespan=lifespan)
    settings = ctx.settings

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "session store unavailable"})

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        store_ok = ctx.store.ping()
        return HealthResponse(
            status="ok" if store_ok else "degraded",
            uptime_s=int(time.monotonic() - started_at),
            store="ok" if store_ok else "failed",
            testing_mode=settings.TESTING_MODE,
            required_tag=settings.REQUIRED_TAG,
            max_rounds=settings.MAX_ROUNDS,
            night_hours=f"{settings.NIGHT_START_HOUR:02d}:00-{settings.NIGHT_END_HOUR:02d}:00",
        )

    @app.post("/inbound", response_model=InboundOutcome)
    def inbound(payload: InboundRequest) -> InboundOutcome:
        outcome = ctx.controller.handle_inbound(payload.user_id, payload.content)
        if outcome.status == InboundStatus.REJECTED:
            raise HTTPException(status_code=422, detail=outcome.detail)
        return outcome

    @app.post("/selection/run", response_model=list[SelectionOutcome])
    def run_selection() -> list[SelectionOutcome]:
        return ctx.controller.run_selection()

    @app.get("/diagnostics/corrupted", response_model=list[CorruptedUser])
    def corrupted() -> list[CorruptedUser]:
        return ctx.diagnostics.scan_corrupted()

    @app.post("/diagnostics/fix-corrupted", response_model=RepairReport)
    def fix_corrupted() -> RepairReport:
        return ctx.diagnostics.fix_all_corrupted()

    @app.get("/scopes/{scope_id}/stats", response_model=SelectionStats)
    def scope_stats(scope_id: str) -> SelectionStats:
        return ctx.diagnostics.selection_stats(scope_id)

    @app.post("/users/{user_id}/diagnose", response_model=SessionDiagnostics)
    def diagnose_user(user_id: str) -> SessionDiagnostics:
        return ctx.diagnostics.diagnose_user(user_id)

    @app.post("/users/{user_id}/collapse", response_model=CollapseReport)
    def collapse_user(user_id: str) -> CollapseReport:
        return ctx.diagnostics.collapse_user(user_id)

    @app.get("/users/{user_id}/summary", response_model=ConversationSummary)
    def summary(user_id: str) -> ConversationSummary:
        return ctx.diagnostics.conversation_summary(user_id)

    @app.delete("/users/{user_id}/history")
    def clear_history(user_id: str) -> dict[str, int]:
        return {"turns_deleted": ctx.diagnostics.clear_history(user_id)}

    @app.delete("/users/{user_id}", response_model=ResetReport)
    def reset_user(user_id: str) -> ResetReport:
        return ctx.diagnostics.reset_user(user_id)

    return app


def main() -> None:
    # Allow running via: python -m fadebot.web
    import uvicorn

    settings = load_settings()
    setup_logging(json_logs=settings.LOG_JSON, level=settings.LOG_LEVEL)
    app = create_app(build_context(settings), run_scheduler=True)
    uvicorn.run(
        app,
        host=settings.HTTP_HOST,
        port=settings.HTTP_PORT,
        access_log=False,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
