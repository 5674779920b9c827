"""Long-lived per-user conversation insight, merged across sessions."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from companion.core.clock import Clock, utcnow
from companion.core.logging import get_logger
from companion.models.session import SessionSummary, UserContext, UserContextStats

logger = get_logger(__name__)

DEFAULT_PREGNANCY_CONTEXT: dict[str, Any] = {
    "trimester": 1,
    "week_of_pregnancy": 8,
    "is_first_time": True,
}

_NESTED_FIELDS = ("pregnancy_context", "conversation_summary", "behavior_insights")
_ACCUMULATING_FIELDS = ("common_concerns", "preferences", "medical_history", "key_topics")
_PROTECTED_FIELDS = ("user_id", "created_at", "last_updated")


def merge_unique(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Union two string lists, keeping the first occurrence of each value."""

    merged: list[str] = []
    seen: set[str] = set()
    for value in (*existing, *incoming):
        if value in seen:
            continue
        seen.add(value)
        merged.append(value)
    return merged


class UserContextStore:
    """Keyed store of :class:`UserContext` records.

    Records are created lazily and removed only by :meth:`clear`. Callers get
    deep copies, so the only way to change a record is through this store.
    """

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._contexts: dict[str, UserContext] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> UserContext | None:
        with self._lock:
            context = self._contexts.get(user_id)
            return context.model_copy(deep=True) if context is not None else None

    def update(self, user_id: str, partial: Mapping[str, Any]) -> UserContext:
        """Create-or-update a record from a partial mapping.

        Top-level fields are replaced; the nested maps are merged key by key.
        Accumulating summary lists are unioned so they never shrink.
        """

        with self._lock:
            return self._apply(user_id, partial)

    def merge_session_summary(
        self,
        user_id: str,
        summary: SessionSummary | Mapping[str, Any],
    ) -> UserContext:
        """Fold one session's summary into the user's record."""

        if not isinstance(summary, SessionSummary):
            summary = SessionSummary.model_validate(summary)

        with self._lock:
            existing = self._contexts.get(user_id)
            session_count = existing.session_count if existing else 0
            total_messages = existing.total_messages if existing else 0

            updated = self._apply(
                user_id,
                {
                    "session_count": session_count + 1,
                    "total_messages": total_messages + summary.message_count,
                    "pregnancy_context": summary.pregnancy_context,
                    "conversation_summary": {
                        "common_concerns": summary.concerns,
                        "preferences": summary.preferences,
                        "medical_history": summary.medical_info,
                        "key_topics": summary.topics,
                        "last_discussed": summary.recent_topics,
                    },
                },
            )

        logger.info(
            "user_context.session_merged",
            user_id=user_id,
            session_count=updated.session_count,
            total_messages=updated.total_messages,
        )
        return updated

    def get_pregnancy_context(self, user_id: str) -> dict[str, Any]:
        """Context used to seed a new session for ``user_id``.

        Falls back to a conservative first-trimester default when the user
        has no record; use :meth:`get` to tell the two apart.
        """

        with self._lock:
            context = self._contexts.get(user_id)
            if context is None:
                return dict(DEFAULT_PREGNANCY_CONTEXT)

            summary = context.conversation_summary
            return {
                **context.pregnancy_context,
                "common_concerns": list(summary.common_concerns),
                "preferences": list(summary.preferences),
                "recent_topics": list(summary.last_discussed),
            }

    def clear(self, user_id: str) -> bool:
        with self._lock:
            deleted = self._contexts.pop(user_id, None) is not None

        if deleted:
            logger.info("user_context.cleared", user_id=user_id)
        return deleted

    def user_ids(self) -> list[str]:
        with self._lock:
            return list(self._contexts)

    def stats(self) -> UserContextStats:
        with self._lock:
            contexts = list(self._contexts.values())

        total_users = len(contexts)
        total_sessions = sum(context.session_count for context in contexts)
        total_messages = sum(context.total_messages for context in contexts)
        return UserContextStats(
            total_users=total_users,
            total_sessions=total_sessions,
            total_messages=total_messages,
            average_sessions_per_user=round(total_sessions / total_users) if total_users else 0,
            average_messages_per_user=round(total_messages / total_users) if total_users else 0,
        )

    def _apply(self, user_id: str, partial: Mapping[str, Any]) -> UserContext:
        # Caller holds the lock.
        now = self._clock()
        existing = self._contexts.get(user_id)
        if existing is None:
            existing = UserContext(user_id=user_id, created_at=now, last_updated=now)
            logger.info("user_context.created", user_id=user_id)

        data = existing.model_dump()
        for key, value in partial.items():
            if key in _PROTECTED_FIELDS:
                continue
            if key in _NESTED_FIELDS:
                if isinstance(value, BaseModel):
                    value = value.model_dump(exclude_unset=True)
                data[key] = self._merge_nested(key, data[key], value or {})
            else:
                data[key] = value

        data["last_updated"] = now
        updated = UserContext.model_validate(data)
        self._contexts[user_id] = updated
        return updated.model_copy(deep=True)

    @staticmethod
    def _merge_nested(name: str, current: dict[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
        merged = dict(current)
        for key, value in incoming.items():
            if name == "conversation_summary" and key in _ACCUMULATING_FIELDS:
                merged[key] = merge_unique(merged.get(key, []), value or [])
            else:
                merged[key] = value
        return merged
