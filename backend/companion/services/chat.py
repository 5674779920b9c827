"""Chat orchestration: wire one user message through session, responder and lifecycle."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.runnables import Runnable
from langsmith import traceable

from companion.core.errors import SessionNotFound
from companion.core.logging import get_logger
from companion.models.session import SessionSnapshot, Turn
from companion.services.lifecycle import SessionLifecycleDriver
from companion.services.llm import parse_json_object
from companion.services.sessions import SessionStore
from companion.services.user_context import UserContextStore

logger = get_logger(__name__)

FALLBACK_REPLY = (
    "I'm having trouble answering right now. Please try again in a moment, "
    "and reach out to your healthcare provider if something feels urgent."
)

_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "nutrition": ("eat", "food", "nutrition", "vitamin", "diet"),
    "exercise": ("exercise", "walk", "yoga", "workout"),
    "symptoms": ("nausea", "pain", "fatigue", "cramp", "sick"),
    "development": ("baby", "develop", "growth", "kick"),
    "medical": ("doctor", "appointment", "scan", "test", "medication"),
}

DEFAULT_SUGGESTIONS = [
    "What should I eat this week?",
    "Which symptoms are normal right now?",
    "How is my baby developing?",
]

RESPONDER_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            (
                "You are a knowledgeable and supportive pregnancy assistant. "
                "Give evidence-based, practical advice in at most five sentences and remind the user "
                "to consult a healthcare provider about medical concerns. "
                'Reply with a JSON object: {{"text": string, "type": one of nutrition, symptoms, '
                'exercise, development, general, medical, "suggestions": up to three follow-up questions}}.'
            ),
        ),
        (
            "human",
            "What we know about the user:\n{context}\n\nRecent conversation:\n{history}\n\nUser message: {message}",
        ),
    ]
)


@dataclass(frozen=True, slots=True)
class AssistantReply:
    text: str
    type: str = "general"
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChatReply:
    session_id: str
    message: str
    reply: AssistantReply
    conversation_length: int
    session_rotated: bool
    new_session: bool


class Responder(Protocol):
    async def respond(
        self,
        message: str,
        *,
        history: Sequence[Turn],
        context: Mapping[str, Any],
    ) -> AssistantReply: ...


def categorize(text: str) -> str:
    lowered = text.lower()
    for category, keywords in _CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return "general"


def format_history(turns: Sequence[Turn]) -> str:
    if not turns:
        return "None."
    labels = {"user": "User", "assistant": "Assistant", "system": "Note"}
    return "\n".join(f"{labels[turn.role]}: {turn.text}" for turn in turns)


class StaticResponder:
    """Canned replies for environments without a model key."""

    async def respond(
        self,
        message: str,
        *,
        history: Sequence[Turn],
        context: Mapping[str, Any],
    ) -> AssistantReply:
        trimester = context.get("trimester")
        stage = f" in trimester {trimester}" if trimester else ""
        return AssistantReply(
            text=(
                f"Thanks for sharing. Many people{stage} ask about this. "
                "Rest, stay hydrated and check with your healthcare provider if anything worries you."
            ),
            type=categorize(message),
            suggestions=list(DEFAULT_SUGGESTIONS),
        )


class LLMResponder:
    """Generate replies with a chat model, degrading to a fixed message on failure."""

    def __init__(self, llm: Any, prompt: ChatPromptTemplate = RESPONDER_PROMPT) -> None:
        self.chain: Runnable = prompt | llm | StrOutputParser()

    @traceable(name="responder.respond")
    async def respond(
        self,
        message: str,
        *,
        history: Sequence[Turn],
        context: Mapping[str, Any],
    ) -> AssistantReply:
        try:
            raw: str = await self.chain.ainvoke(
                {
                    "message": message,
                    "history": format_history(history),
                    "context": json.dumps(dict(context), default=str),
                }
            )
        except Exception as exc:  # pragma: no cover - external dependency
            logger.exception("responder.generation.error", exc_info=exc)
            return AssistantReply(text=FALLBACK_REPLY, type="general", suggestions=list(DEFAULT_SUGGESTIONS))

        try:
            payload = parse_json_object(raw)
        except ValueError:
            return AssistantReply(text=raw.strip(), type=categorize(raw), suggestions=list(DEFAULT_SUGGESTIONS))

        text = str(payload.get("text") or "").strip()
        if not text:
            return AssistantReply(text=raw.strip(), type=categorize(raw), suggestions=list(DEFAULT_SUGGESTIONS))

        suggestions = payload.get("suggestions")
        if not isinstance(suggestions, list):
            suggestions = list(DEFAULT_SUGGESTIONS)
        return AssistantReply(
            text=text,
            type=str(payload.get("type") or categorize(text)),
            suggestions=[str(item) for item in suggestions],
        )


class ChatService:
    """Handle chat messages on top of the session core."""

    def __init__(
        self,
        sessions: SessionStore,
        user_contexts: UserContextStore,
        driver: SessionLifecycleDriver,
        responder: Responder,
        *,
        prompt_turn_limit: int = 10,
    ) -> None:
        self.sessions = sessions
        self.user_contexts = user_contexts
        self.driver = driver
        self.responder = responder
        self.prompt_turn_limit = prompt_turn_limit

    async def handle_message(
        self,
        user_id: str,
        message: str,
        *,
        session_id: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> ChatReply:
        message = message.strip()
        if not message:
            raise ValueError("Message must not be empty.")

        new_session = session_id is None or not self.sessions.is_active(session_id)
        if new_session:
            if session_id is not None:
                logger.info("chat.session.replaced", stale_session_id=session_id, user_id=user_id)
            session_id = self.sessions.create_session(user_id, self._session_seed(user_id, context))
        elif context:
            self.sessions.update_context(session_id, context)

        if not self.sessions.append_turn(session_id, "user", message):
            raise SessionNotFound(session_id)

        session = self.sessions.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        # Defaults and flattened summary lists reach the prompt only, never the session.
        personalization = {**self.user_contexts.get_pregnancy_context(user_id), **session.context}
        history = session.turns[-self.prompt_turn_limit :] if self.prompt_turn_limit > 0 else []

        reply = await self.responder.respond(message, history=history[:-1], context=personalization)

        appended = self.sessions.append_turn(
            session_id,
            "assistant",
            reply.text,
            {"type": reply.type, "suggestions": reply.suggestions},
        )
        if not appended:
            logger.warning("chat.session.lost", session_id=session_id, user_id=user_id)
            raise SessionNotFound(session_id)
        conversation_length = len(self.sessions.get_full_conversation(session_id))
        rotation = self.driver.after_assistant_turn(session_id)

        logger.info(
            "chat.message.handled",
            user_id=user_id,
            session_id=session_id,
            conversation_length=conversation_length,
            rotated=rotation is not None,
        )
        return ChatReply(
            session_id=session_id,
            message=message,
            reply=reply,
            conversation_length=conversation_length,
            session_rotated=rotation is not None,
            new_session=new_session,
        )

    def _session_seed(self, user_id: str, context: Mapping[str, Any] | None) -> dict[str, Any]:
        stored = self.user_contexts.get(user_id)
        known = stored.pregnancy_context if stored is not None else {}
        return {**known, **(context or {})}

    def end_conversation(self, session_id: str) -> SessionSnapshot | None:
        """End a session on request and summarize it in the background."""

        rotation = self.driver.end_and_summarize(session_id)
        return rotation.snapshot if rotation is not None else None
