"""Composition of the conversation core from application settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from companion.core.clock import Clock, utcnow
from companion.core.config import AppSettings
from companion.core.logging import get_logger
from companion.services.chat import ChatService, LLMResponder, Responder, StaticResponder
from companion.services.lifecycle import SessionLifecycleDriver
from companion.services.llm import create_chat_model
from companion.services.sessions import SessionStore
from companion.services.summarizer import KeywordSummarizer, LLMSummarizer, Summarizer
from companion.services.user_context import UserContextStore

logger = get_logger(__name__)


@dataclass(slots=True)
class ChatRuntime:
    """Container for the long-lived stores and services of one process."""

    settings: AppSettings
    sessions: SessionStore
    user_contexts: UserContextStore
    driver: SessionLifecycleDriver
    chat: ChatService

    async def start(self) -> None:
        self.sessions.start_sweep(self.settings.sweep_interval_seconds)

    async def stop(self) -> None:
        await self.sessions.stop_sweep()
        await self.driver.shutdown()


def build_runtime(
    settings: AppSettings,
    *,
    clock: Clock = utcnow,
    summarizer: Summarizer | None = None,
    responder: Responder | None = None,
) -> ChatRuntime:
    """Instantiate stores, summarizer, responder and lifecycle driver."""

    if summarizer is None or responder is None:
        if settings.openai_api_key:
            summarizer = summarizer or LLMSummarizer(
                create_chat_model(settings, model=settings.summarizer_model, temperature=0.0)
            )
            responder = responder or LLMResponder(
                create_chat_model(settings, model=settings.llm_model, temperature=settings.llm_temperature)
            )
        else:
            logger.warning("runtime.offline_mode", message="OpenAI key not configured; using offline summarizer")
            summarizer = summarizer or KeywordSummarizer()
            responder = responder or StaticResponder()

    sessions = SessionStore(
        ttl=timedelta(seconds=settings.session_ttl_seconds),
        max_turns=settings.session_max_turns,
        retained_turns=settings.session_retained_turns,
        clock=clock,
    )
    user_contexts = UserContextStore(clock=clock)
    driver = SessionLifecycleDriver(
        sessions,
        user_contexts,
        summarizer,
        summarize_after=settings.summarize_after_exchanges,
        summarizer_timeout=settings.summarizer_timeout_seconds,
    )
    chat = ChatService(
        sessions,
        user_contexts,
        driver,
        responder,
        prompt_turn_limit=settings.prompt_turn_limit,
    )
    return ChatRuntime(
        settings=settings,
        sessions=sessions,
        user_contexts=user_contexts,
        driver=driver,
        chat=chat,
    )
