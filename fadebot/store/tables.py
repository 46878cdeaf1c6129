from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class SessionRow(SQLModel, table=True):
    __tablename__ = "engagement_sessions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    scope_id: str = Field(index=True)
    round_count: int = Field(default=0)
    complete: bool = Field(default=False, index=True)
    created_at: datetime = Field(index=True)
    last_turn_at: Optional[datetime] = Field(default=None)
    context_json: str = Field(default="{}")


class TurnRow(SQLModel, table=True):
    __tablename__ = "conversation_turns"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    content: str
    is_from_user: bool
    round_label: int
    created_at: datetime = Field(index=True)
