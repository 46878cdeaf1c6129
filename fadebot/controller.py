from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any

from fadebot.adapters.base import ChannelAdapter
from fadebot.config import Settings
from fadebot.domain import (
    AdvanceOutcome,
    DeliveryResult,
    InboundOutcome,
    InboundStatus,
    Member,
    SelectionOutcome,
    SelectionStatus,
    utcnow,
)
from fadebot.engine import SessionEngine
from fadebot.errors import InvalidInput
from fadebot.gate import SelectionGate
from fadebot.logging_setup import get_logger, log_event
from fadebot.strategy import CandidateStrategy


def build_context(member: Member, scope_id: str, now: datetime) -> dict[str, Any]:
    """Snapshot of what was observable about the member when they were picked."""
    return {
        "user_id": member.id,
        "username": member.username,
        "scope_id": scope_id,
        "status": member.status.value,
        "activity": member.activity,
        "collected_at": now.isoformat(),
    }


class Controller:
    """Orchestrates selection runs and inbound turns using an adapter and the engine."""

    def __init__(
        self,
        adapter: ChannelAdapter,
        engine: SessionEngine,
        gate: SelectionGate,
        strategy: CandidateStrategy,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.adapter = adapter
        self.engine = engine
        self.gate = gate
        self.strategy = strategy
        self.settings = settings
        self._clock = clock or utcnow
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="fadebot-deliver")
        self._logger = get_logger(self.__class__.__name__)

    # Selection -----------------------------------------------------------------
    def run_selection(self) -> list[SelectionOutcome]:
        if not self.gate.is_active_window():
            self._logger.debug("Outside the activity window; skipping selection")
            return [SelectionOutcome(status=SelectionStatus.OUTSIDE_WINDOW)]

        log_event(self._logger, "selection", "Starting selection run")
        outcomes: list[SelectionOutcome] = []
        for scope in self.adapter.list_scopes():
            try:
                outcomes.append(self.process_scope(scope.id))
            except Exception as exc:
                # failures stay scoped; remaining scopes still run
                self._logger.exception("Selection failed in scope %s", scope.id)
                outcomes.append(SelectionOutcome(scope_id=scope.id, status=SelectionStatus.FAILED, message=str(exc)))
        log_event(
            self._logger,
            "selection",
            "Selection run finished: %d scope(s), %d contacted",
            len(outcomes),
            sum(1 for o in outcomes if o.status == SelectionStatus.CONTACTED),
        )
        return outcomes

    def process_scope(self, scope_id: str) -> SelectionOutcome:
        tag = self.settings.REQUIRED_TAG
        if not self.gate.can_select(scope_id):
            self._logger.debug("Cannot select in %s yet (cooldown)", scope_id)
            return SelectionOutcome(scope_id=scope_id, status=SelectionStatus.COOLDOWN)

        members = self.adapter.list_members(scope_id)
        picked = self.strategy.pick(members, tag)
        if picked is None:
            self._logger.warning("No present members tagged %r in %s (%d members)", tag, scope_id, len(members))
            return SelectionOutcome(scope_id=scope_id, status=SelectionStatus.NO_CANDIDATES)

        # membership may have changed since the snapshot was taken
        fresh = self.adapter.get_member(scope_id, picked.id)
        if fresh is None or tag not in fresh.tags:
            self._logger.error("Selected %s no longer holds %r; aborting selection", picked.username, tag)
            return SelectionOutcome(
                scope_id=scope_id, status=SelectionStatus.VERIFICATION_FAILED, user_id=picked.id
            )

        log_event(self._logger, "user-selected", "Selected %s in %s", fresh.username, scope_id)
        context = build_context(fresh, scope_id, self._clock())
        session = self.engine.open_session(fresh.id, scope_id, context)
        text = self.engine.compose("", 0, context, [])

        result = self.deliver(fresh.id, text)
        if not result.ok:
            return SelectionOutcome(
                scope_id=scope_id,
                status=SelectionStatus.DELIVERY_FAILED,
                user_id=fresh.id,
                session_id=session.id,
                message=result.message,
            )
        return SelectionOutcome(
            scope_id=scope_id,
            status=SelectionStatus.CONTACTED,
            user_id=fresh.id,
            session_id=session.id,
            message=text,
        )

    # Inbound -----------------------------------------------------------------------
    def handle_inbound(self, user_id: str, text: str) -> InboundOutcome:
        try:
            result = self.engine.advance(user_id, text)
        except InvalidInput as exc:
            self._logger.info("Rejected inbound turn from %r: %s", user_id, exc)
            return InboundOutcome(user_id=str(user_id), status=InboundStatus.REJECTED, detail=str(exc))

        if result.outcome != AdvanceOutcome.REPLIED:
            notice = self.settings.TERMINAL_NOTICE
            delivery = self.deliver(user_id, notice)
            log_event(self._logger, result.outcome.value, "Sent terminal notice to %s", user_id)
            return InboundOutcome(
                user_id=user_id,
                status=InboundStatus.TERMINAL_NOTICE,
                reply=notice,
                delivered=delivery.ok,
                detail=result.outcome.value if delivery.ok else delivery.message,
            )

        # the round is already committed; a failed send is reported, never retried
        delivery = self.deliver(user_id, result.text or "")
        return InboundOutcome(
            user_id=user_id,
            status=InboundStatus.REPLIED,
            reply=result.text,
            round=result.round,
            session_complete=result.session_complete,
            delivered=delivery.ok,
            detail=delivery.message,
        )

    def deliver(self, user_id: str, text: str) -> DeliveryResult:
        future = self._executor.submit(self.adapter.send, user_id, text)
        try:
            result = future.result(timeout=self.settings.DELIVERY_TIMEOUT_S)
        except FutureTimeout:
            future.cancel()
            result = DeliveryResult(
                ok=False, user_id=user_id, message=f"timed out after {self.settings.DELIVERY_TIMEOUT_S:.1f}s"
            )
        except Exception as exc:
            result = DeliveryResult(ok=False, user_id=user_id, message=str(exc))

        if result.ok:
            log_event(self._logger, "message-sent", "Delivered %d chars to %s", len(text), user_id)
        else:
            self._logger.error("Delivery to %s failed: %s", user_id, result.message)
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
