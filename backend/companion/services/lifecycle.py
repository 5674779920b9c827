"""Summarize-and-rotate policy for conversation sessions."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from companion.core.errors import SummarizationFailed
from companion.core.logging import get_logger
from companion.models.session import SessionSnapshot, SessionSummary, UserContext
from companion.services.sessions import SessionStore
from companion.services.summarizer import Summarizer
from companion.services.user_context import UserContextStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SummaryOutcome:
    """Result of one background summarization."""

    session_id: str
    user_id: str
    succeeded: bool
    user_context: UserContext | None = None
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class Rotation:
    """An ended session and the task summarizing it."""

    snapshot: SessionSnapshot
    task: asyncio.Task[SummaryOutcome]


OutcomeListener = Callable[[SummaryOutcome], None]


class SessionLifecycleDriver:
    """Decide when a session is summarized, then end it and merge its insights.

    The session is always removed from the store before the summarizer runs,
    so a slow or failing summarizer can never keep a conversation in memory.
    Summaries are produced in background tasks whose outcome is reported to
    registered listeners and returned from the task itself.
    """

    def __init__(
        self,
        sessions: SessionStore,
        user_contexts: UserContextStore,
        summarizer: Summarizer,
        *,
        summarize_after: int = 10,
        summarizer_timeout: float | None = None,
    ) -> None:
        if summarize_after < 1:
            raise ValueError("summarize_after must be at least 1")

        self.sessions = sessions
        self.user_contexts = user_contexts
        self.summarizer = summarizer
        self.summarize_after = summarize_after
        self.summarizer_timeout = summarizer_timeout
        self._pending: set[asyncio.Task[SummaryOutcome]] = set()
        self._listeners: list[OutcomeListener] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def should_rotate(self, session_id: str) -> bool:
        exchanges = self.sessions.exchange_count(session_id)
        return exchanges is not None and exchanges >= self.summarize_after

    def after_assistant_turn(self, session_id: str) -> asyncio.Task[SummaryOutcome] | None:
        """Rotate the session out once it reaches the exchange threshold.

        Returns the background summarization task, or None when the session
        stays open (or no longer exists).
        """

        if not self.should_rotate(session_id):
            return None
        rotation = self.end_and_summarize(session_id, reason="threshold")
        return rotation.task if rotation is not None else None

    def end_and_summarize(self, session_id: str, *, reason: str = "explicit") -> Rotation | None:
        """End the session now and summarize it in the background."""

        snapshot = self.sessions.end_session(session_id)
        if snapshot is None:
            return None

        logger.info(
            "lifecycle.rotation.started",
            session_id=session_id,
            user_id=snapshot.user_id,
            reason=reason,
            exchanges=snapshot.exchange_count,
        )
        task = asyncio.get_running_loop().create_task(
            self._summarize_and_merge(snapshot),
            name=f"summarize-{session_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return Rotation(snapshot=snapshot, task=task)

    async def drain(self) -> list[SummaryOutcome]:
        """Wait for every outstanding summarization to finish."""

        if not self._pending:
            return []
        results = await asyncio.gather(*list(self._pending), return_exceptions=True)
        return [result for result in results if isinstance(result, SummaryOutcome)]

    async def shutdown(self) -> None:
        """Cancel outstanding summarizations at process exit."""

        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("lifecycle.shutdown.cancelled", cancelled=len(tasks))

    async def _summarize_and_merge(self, snapshot: SessionSnapshot) -> SummaryOutcome:
        try:
            summary = await self._summarize(snapshot)
            user_context = self.user_contexts.merge_session_summary(snapshot.user_id, summary)
        except (SummarizationFailed, ValueError) as exc:
            # pydantic's ValidationError is a ValueError; a rejected merge leaves the record untouched.
            logger.error(
                "lifecycle.summary.failed",
                session_id=snapshot.session_id,
                user_id=snapshot.user_id,
                error=str(exc),
            )
            return SummaryOutcome(snapshot.session_id, snapshot.user_id, succeeded=False, error=exc)

        logger.info(
            "lifecycle.summary.merged",
            session_id=snapshot.session_id,
            user_id=snapshot.user_id,
            session_count=user_context.session_count,
        )
        return SummaryOutcome(snapshot.session_id, snapshot.user_id, succeeded=True, user_context=user_context)

    async def _summarize(self, snapshot: SessionSnapshot) -> SessionSummary:
        try:
            call = self.summarizer.summarize(snapshot.conversational_turns(), self._summary_context(snapshot))
            if self.summarizer_timeout is not None:
                result = await asyncio.wait_for(call, timeout=self.summarizer_timeout)
            else:
                result = await call
        except SummarizationFailed:
            raise
        except asyncio.TimeoutError as exc:
            raise SummarizationFailed(f"Summarizer timed out after {self.summarizer_timeout}s.") from exc
        except Exception as exc:
            logger.exception("lifecycle.summarizer.error", session_id=snapshot.session_id, exc_info=exc)
            raise SummarizationFailed(str(exc)) from exc

        return self._validate(result)

    def _summary_context(self, snapshot: SessionSnapshot) -> dict[str, Any]:
        stored = self.user_contexts.get(snapshot.user_id)
        base = dict(stored.pregnancy_context) if stored is not None else {}
        return {**base, **snapshot.context}

    @staticmethod
    def _validate(result: Any) -> SessionSummary:
        if isinstance(result, SessionSummary):
            return result
        if not isinstance(result, Mapping):
            raise SummarizationFailed(f"Summarizer returned {type(result).__name__}, expected a summary.")
        try:
            return SessionSummary.model_validate(result)
        except ValidationError as exc:
            raise SummarizationFailed(f"Summarizer returned an invalid summary: {exc}") from exc

    def _on_done(self, task: asyncio.Task[SummaryOutcome]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("lifecycle.summary.crashed", error=str(task.exception()))
            return

        outcome = task.result()
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception as exc:  # pragma: no cover - listener bugs must not leak
                logger.exception("lifecycle.listener.failed", exc_info=exc)
