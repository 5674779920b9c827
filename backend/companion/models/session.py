"""Session, turn and user-context records held by the conversation core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Literal, TypedDict, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from companion.core.clock import utcnow

Role = Literal["user", "assistant", "system"]
ROLES: frozenset[str] = frozenset(get_args(Role))
CONVERSATIONAL_ROLES: frozenset[str] = frozenset({"user", "assistant"})


class TurnPayload(TypedDict):
    """Minimal turn shape handed to the summarizer."""

    role: str
    text: str


@dataclass(frozen=True, slots=True)
class Turn:
    """A single message in a session buffer."""

    role: Role
    text: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> TurnPayload:
        return {"role": self.role, "text": self.text}


@dataclass(slots=True)
class Session:
    """Mutable state of one active conversation, owned by the session store."""

    session_id: str
    user_id: str
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    turns: list[Turn] = field(default_factory=list)
    exchange_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def copy(self) -> Session:
        """Detached copy safe to hand to callers."""

        return replace(self, context=dict(self.context), turns=list(self.turns))


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Everything an ended session leaves behind for summarization."""

    session_id: str
    user_id: str
    turns: list[Turn]
    context: dict[str, Any]
    created_at: datetime
    ended_at: datetime
    exchange_count: int

    @property
    def duration(self) -> timedelta:
        return self.ended_at - self.created_at

    @property
    def message_count(self) -> int:
        return len(self.turns)

    def conversational_turns(self) -> list[TurnPayload]:
        return [turn.as_payload() for turn in self.turns if turn.role in CONVERSATIONAL_ROLES]


@dataclass(frozen=True, slots=True)
class SessionStats:
    active_sessions: int
    total_turns: int
    average_turns_per_session: int


class SessionSummary(BaseModel):
    """Compact insight record extracted from one finished session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    concerns: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    medical_info: list[str] = Field(default_factory=list)
    recent_topics: list[str] = Field(default_factory=list)
    pregnancy_context: dict[str, Any] = Field(default_factory=dict)
    message_count: int = Field(..., ge=0)


class ConversationSummary(BaseModel):
    common_concerns: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    medical_history: list[str] = Field(default_factory=list)
    key_topics: list[str] = Field(default_factory=list)
    last_discussed: list[str] = Field(default_factory=list)


class BehaviorInsights(BaseModel):
    preferred_response_style: str = "supportive"
    time_of_day_active: list[str] = Field(default_factory=list)
    frequent_questions: list[str] = Field(default_factory=list)


class UserContext(BaseModel):
    """Durable, cross-session personalization record for one user."""

    user_id: str
    pregnancy_context: dict[str, Any] = Field(default_factory=dict)
    conversation_summary: ConversationSummary = Field(default_factory=ConversationSummary)
    behavior_insights: BehaviorInsights = Field(default_factory=BehaviorInsights)
    session_count: int = Field(default=0, ge=0)
    total_messages: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)


class UserContextStats(BaseModel):
    total_users: int
    total_sessions: int
    total_messages: int
    average_sessions_per_user: int
    average_messages_per_user: int
