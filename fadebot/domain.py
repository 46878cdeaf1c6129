from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PresenceStatus(str, Enum):
    ONLINE = "online"
    IDLE = "idle"
    DND = "dnd"
    OFFLINE = "offline"


class Scope(BaseModel):
    """A community (tenant) that members belong to and sessions are grouped by."""

    id: str
    name: str = ""


class Member(BaseModel):
    """Immutable snapshot of a community member at selection time."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    tags: frozenset[str] = Field(default_factory=frozenset)
    status: PresenceStatus = PresenceStatus.OFFLINE
    activity: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """One engagement cycle for a user, created by a selection event."""

    id: int
    user_id: str
    scope_id: str
    round_count: int = 0
    complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    last_turn_at: datetime | None = None
    context_json: str = "{}"

    def load_context(self) -> dict[str, Any]:
        # Unreadable snapshots degrade to an empty context.
        try:
            data = json.loads(self.context_json)
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def is_corrupted(self, max_rounds: int) -> bool:
        return not self.complete and self.round_count >= max_rounds


class ActiveSession(BaseModel):
    """The single usable session for a user with its context deserialized."""

    session: Session
    context: dict[str, Any] = Field(default_factory=dict)


class Turn(BaseModel):
    """Append-only log entry for one side of an exchange."""

    id: int
    user_id: str
    content: str
    is_from_user: bool
    round_label: int
    created_at: datetime = Field(default_factory=utcnow)


class AdvanceOutcome(str, Enum):
    REPLIED = "replied"
    NO_ACTIVE_SESSION = "no_active_session"
    LIMIT_EXCEEDED = "limit_exceeded"


class AdvanceResult(BaseModel):
    """Outcome of feeding one inbound turn to the session engine."""

    outcome: AdvanceOutcome
    text: str | None = None
    round: int | None = None
    session_complete: bool = False
    session: Session | None = None

    @property
    def replied(self) -> bool:
        return self.outcome == AdvanceOutcome.REPLIED


class DeliveryResult(BaseModel):
    """Outcome of an attempted send over the channel adapter."""

    ok: bool
    user_id: str
    message: str = ""
    sent_at: datetime = Field(default_factory=utcnow)


class SelectionStatus(str, Enum):
    OUTSIDE_WINDOW = "outside_window"
    COOLDOWN = "cooldown"
    NO_CANDIDATES = "no_candidates"
    VERIFICATION_FAILED = "verification_failed"
    CONTACTED = "contacted"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


class SelectionOutcome(BaseModel):
    scope_id: str | None = None
    status: SelectionStatus
    user_id: str | None = None
    session_id: int | None = None
    message: str = ""


class InboundStatus(str, Enum):
    REPLIED = "replied"
    TERMINAL_NOTICE = "terminal_notice"
    REJECTED = "rejected"


class InboundOutcome(BaseModel):
    user_id: str
    status: InboundStatus
    reply: str | None = None
    round: int | None = None
    session_complete: bool = False
    delivered: bool = False
    detail: str = ""


# Diagnostics payloads -----------------------------------------------------------


class CorruptedUser(BaseModel):
    user_id: str
    corrupted_count: int


class RepairReport(BaseModel):
    found: int
    fixed: int
    affected_users: int


class SessionDiagnostics(BaseModel):
    user_id: str
    total: int = 0
    incomplete: int = 0
    active: int = 0
    corrupted: int = 0
    fixed: int = 0


class CollapseReport(BaseModel):
    user_id: str
    kept_id: int | None = None
    completed_ids: list[int] = Field(default_factory=list)


class ResetReport(BaseModel):
    user_id: str
    sessions_deleted: int
    turns_deleted: int


class ConversationSummary(BaseModel):
    user_id: str
    has_active_session: bool
    round_count: int
    max_rounds: int
    total_turns: int
    user_turns: int
    bot_turns: int
    last_activity: datetime | None = None
    recent_turns: list[Turn] = Field(default_factory=list)
    current_cycle: list[Turn] = Field(default_factory=list)


class SelectionStats(BaseModel):
    scope_id: str
    total_selections: int
    unique_users: int
    last_selection: datetime | None = None
    average_rounds: float = 0.0
    completed_sessions: int = 0
