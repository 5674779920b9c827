"""Session summarizers: turn a finished conversation into mergeable insights."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langsmith import traceable
from pydantic import ValidationError

from companion.core.errors import SummarizationFailed
from companion.core.logging import get_logger
from companion.models.session import SessionSummary, TurnPayload
from companion.services.llm import message_content_to_text, parse_json_object

logger = get_logger(__name__)

CONCERN_KEYWORDS = ("nausea", "fatigue", "pain", "worry", "concern", "problem")
PREFERENCE_KEYWORDS = ("natural", "organic", "gentle", "prefer", "like", "want")
TOPIC_KEYWORDS = ("exercise", "nutrition", "sleep", "symptoms", "appointment")

SUMMARY_SYSTEM_PROMPT = (
    "You analyse pregnancy-related conversations between a user and a support assistant. "
    "Return only a JSON object with these keys: "
    '"concerns" (health concerns mentioned), "preferences" (user preferences mentioned), '
    '"topics" (main topics discussed), "medicalInfo" (important medical information mentioned), '
    '"recentTopics" (the three most recent topics), and "pregnancyContext" (an object that may contain '
    '"trimester", "week_of_pregnancy", "symptoms" and "lifestyle"). '
    "Every list holds short strings, at most five items each. "
    "Extract only facts stated in the conversation."
)


class Summarizer(Protocol):
    async def summarize(
        self,
        turns: Sequence[TurnPayload],
        current_context: Mapping[str, Any],
    ) -> SessionSummary:
        """Summarize ``turns``; raise :class:`SummarizationFailed` on any error."""


def render_transcript(turns: Sequence[TurnPayload]) -> str:
    return "\n".join(f"{turn['role']}: {turn['text']}" for turn in turns)


def _empty_summary(current_context: Mapping[str, Any]) -> SessionSummary:
    return SessionSummary(pregnancy_context=dict(current_context), message_count=0)


class LLMSummarizer:
    """Ask a chat model for a structured summary and validate the reply."""

    def __init__(self, llm: Any) -> None:
        self._llm = llm

    @traceable(name="summarizer.summarize")
    async def summarize(
        self,
        turns: Sequence[TurnPayload],
        current_context: Mapping[str, Any],
    ) -> SessionSummary:
        if not turns:
            return _empty_summary(current_context)

        human_payload = (
            f"Conversation to analyse:\n{render_transcript(turns)}\n\n"
            f"Current pregnancy context:\n{json.dumps(dict(current_context), default=str)}"
        )
        messages: list[BaseMessage] = [
            SystemMessage(content=SUMMARY_SYSTEM_PROMPT),
            HumanMessage(content=human_payload),
        ]

        try:
            reply = await self._llm.ainvoke(messages)
        except Exception as exc:
            logger.exception("summarizer.llm.failed", exc_info=exc)
            raise SummarizationFailed("Summary model call failed.") from exc

        try:
            payload = parse_json_object(message_content_to_text(reply))
            payload.pop("messageCount", None)
            extracted = SessionSummary.model_validate({**payload, "message_count": len(turns)})
        except (ValueError, ValidationError) as exc:
            raise SummarizationFailed(f"Summary model returned an invalid payload: {exc}") from exc

        summary = extracted.model_copy(
            update={"pregnancy_context": {**current_context, **extracted.pregnancy_context}}
        )
        logger.info(
            "summarizer.completed",
            concerns=len(summary.concerns),
            preferences=len(summary.preferences),
            topics=len(summary.topics),
        )
        return summary


class KeywordSummarizer:
    """Offline summarizer based on fixed keyword lists, used without a model key."""

    def __init__(self, recent_topic_count: int = 3, recent_topic_words: int = 3) -> None:
        self.recent_topic_count = recent_topic_count
        self.recent_topic_words = recent_topic_words

    async def summarize(
        self,
        turns: Sequence[TurnPayload],
        current_context: Mapping[str, Any],
    ) -> SessionSummary:
        if not turns:
            return _empty_summary(current_context)

        text = render_transcript(turns).lower()
        recent = [
            " ".join(turn["text"].split()[: self.recent_topic_words])
            for turn in turns[-self.recent_topic_count :]
        ]
        return SessionSummary(
            concerns=[keyword for keyword in CONCERN_KEYWORDS if keyword in text],
            preferences=[keyword for keyword in PREFERENCE_KEYWORDS if keyword in text],
            topics=[keyword for keyword in TOPIC_KEYWORDS if keyword in text],
            recent_topics=[topic for topic in recent if topic],
            pregnancy_context=dict(current_context),
            message_count=len(turns),
        )
