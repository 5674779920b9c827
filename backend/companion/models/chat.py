"""Pydantic schemas for the chat API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from companion.core.clock import utcnow
from companion.models.session import Role, Session, SessionStats, Turn, UserContextStats


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message to the assistant.")
    session_id: str | None = Field(default=None, description="Optional conversation session id.")
    context: dict[str, Any] | None = Field(default=None, description="Extra pregnancy context, e.g. trimester.")


class ChatResponse(BaseModel):
    session_id: str
    user_message: str
    bot_response: str
    response_type: str
    suggestions: list[str] = Field(default_factory=list)
    conversation_length: int
    session_ended: bool = Field(..., description="True when the session was summarized and closed.")
    new_session: bool
    timestamp: datetime = Field(default_factory=utcnow)


class TurnView(BaseModel):
    role: Role
    text: str
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnView":
        return cls(role=turn.role, text=turn.text, timestamp=turn.timestamp, metadata=turn.metadata)


class SessionView(BaseModel):
    session_id: str
    user_id: str
    context: dict[str, Any]
    turn_count: int
    exchange_count: int
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionView":
        return cls(
            session_id=session.session_id,
            user_id=session.user_id,
            context=session.context,
            turn_count=len(session.turns),
            exchange_count=session.exchange_count,
            created_at=session.created_at,
            last_activity_at=session.last_activity_at,
            expires_at=session.expires_at,
        )


class EndSessionResponse(BaseModel):
    session_id: str
    message_count: int
    duration_seconds: float
    summary_pending: bool


class ClearContextResponse(BaseModel):
    cleared: bool


class StatsResponse(BaseModel):
    active_sessions: int
    buffered_turns: int
    average_turns_per_session: int
    pending_summaries: int
    user_contexts: UserContextStats

    @classmethod
    def build(cls, sessions: SessionStats, contexts: UserContextStats, pending: int) -> "StatsResponse":
        return cls(
            active_sessions=sessions.active_sessions,
            buffered_turns=sessions.total_turns,
            average_turns_per_session=sessions.average_turns_per_session,
            pending_summaries=pending,
            user_contexts=contexts,
        )
