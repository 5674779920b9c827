"""In-memory store of active conversation sessions."""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from companion.core.clock import Clock, utcnow
from companion.core.logging import get_logger
from companion.models.session import ROLES, Session, SessionSnapshot, SessionStats, Turn

logger = get_logger(__name__)


class SessionStore:
    """Own creation, expiry and eviction of conversation sessions.

    Sessions live only in this store. Readers receive copies; every mutation
    happens under the store lock so concurrent requests for different sessions
    never see each other's partial writes. Expired sessions are removed lazily
    on lookup and by an optional periodic sweep, both through ``_discard``.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(minutes=30),
        max_turns: int = 50,
        retained_turns: int = 40,
        clock: Clock = utcnow,
    ) -> None:
        if retained_turns >= max_turns:
            raise ValueError("retained_turns must be smaller than max_turns")
        if retained_turns < 1:
            raise ValueError("retained_turns must be positive")

        self.ttl = ttl
        self.max_turns = max_turns
        self.retained_turns = retained_turns
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_session(self, user_id: str, initial_context: Mapping[str, Any] | None = None) -> str:
        """Register a new empty session for ``user_id`` and return its id."""

        now = self._clock()
        with self._lock:
            session_id = self._new_session_id()
            while session_id in self._sessions:
                logger.warning("session.id_collision", session_id=session_id)
                session_id = self._new_session_id()

            self._sessions[session_id] = Session(
                session_id=session_id,
                user_id=user_id,
                created_at=now,
                last_activity_at=now,
                expires_at=now + self.ttl,
                context=dict(initial_context or {}),
            )

        logger.info("session.created", session_id=session_id, user_id=user_id)
        return session_id

    def get_session(self, session_id: str) -> Session | None:
        """Return a copy of a live session, evicting it first if it expired."""

        with self._lock:
            session = self._live(session_id)
            return session.copy() if session is not None else None

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return self._live(session_id) is not None

    def append_turn(
        self,
        session_id: str,
        role: str,
        text: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Append a turn and refresh the session's expiry.

        Returns False when the session is unknown or expired.
        """

        if role not in ROLES:
            raise ValueError(f"Unsupported role: {role!r}")

        now = self._clock()
        with self._lock:
            session = self._live(session_id)
            if session is None:
                logger.warning("session.append.not_found", session_id=session_id, role=role)
                return False

            timestamp = now
            if session.turns and session.turns[-1].timestamp > timestamp:
                timestamp = session.turns[-1].timestamp

            session.turns.append(Turn(role=role, text=text, timestamp=timestamp, metadata=dict(metadata or {})))
            if len(session.turns) > self.max_turns:
                dropped = len(session.turns) - self.retained_turns
                del session.turns[:dropped]
                logger.debug("session.buffer.truncated", session_id=session_id, dropped=dropped)

            if role == "assistant":
                session.exchange_count += 1

            self._touch(session, now)
            turn_count = len(session.turns)

        logger.debug("session.turn.appended", session_id=session_id, role=role, turn_count=turn_count)
        return True

    def update_context(self, session_id: str, partial: Mapping[str, Any]) -> bool:
        """Shallow-merge ``partial`` into the session context."""

        now = self._clock()
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return False
            session.context.update(partial)
            session.last_activity_at = now
        return True

    def extend_session(self, session_id: str) -> bool:
        """Push the expiry out by a full TTL without adding a turn."""

        now = self._clock()
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return False
            self._touch(session, now)
        return True

    def end_session(self, session_id: str) -> SessionSnapshot | None:
        """Remove a live session and hand back everything it held."""

        now = self._clock()
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return None
            self._discard(session_id)

        snapshot = SessionSnapshot(
            session_id=session.session_id,
            user_id=session.user_id,
            turns=list(session.turns),
            context=dict(session.context),
            created_at=session.created_at,
            ended_at=now,
            exchange_count=session.exchange_count,
        )
        logger.info(
            "session.ended",
            session_id=session_id,
            user_id=snapshot.user_id,
            message_count=snapshot.message_count,
            duration_seconds=round(snapshot.duration.total_seconds()),
        )
        return snapshot

    def get_recent_turns(self, session_id: str, limit: int = 10) -> list[Turn]:
        """Return the last ``limit`` turns in conversation order."""

        if limit <= 0:
            return []
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return []
            return session.turns[-limit:]

    def get_full_conversation(self, session_id: str) -> list[Turn]:
        with self._lock:
            session = self._live(session_id)
            return list(session.turns) if session is not None else []

    def exchange_count(self, session_id: str) -> int | None:
        with self._lock:
            session = self._live(session_id)
            return session.exchange_count if session is not None else None

    def sweep_expired(self) -> int:
        """Drop every expired session without summarizing it."""

        now = self._clock()
        with self._lock:
            expired = [sid for sid, session in self._sessions.items() if session.is_expired(now)]
            for session_id in expired:
                self._discard(session_id)

        if expired:
            logger.info("session.sweep.completed", removed=len(expired))
        return len(expired)

    def stats(self) -> SessionStats:
        with self._lock:
            active = len(self._sessions)
            total_turns = sum(len(session.turns) for session in self._sessions.values())

        return SessionStats(
            active_sessions=active,
            total_turns=total_turns,
            average_turns_per_session=round(total_turns / active) if active else 0,
        )

    def start_sweep(self, interval: float) -> None:
        """Run ``sweep_expired`` every ``interval`` seconds on the current event loop."""

        if interval <= 0:
            raise ValueError("Sweep interval must be positive.")
        if self._sweep_task is not None and not self._sweep_task.done():
            return

        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_forever(interval), name="session-sweep"
        )
        logger.info("session.sweep.started", interval_seconds=interval)

    async def stop_sweep(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("session.sweep.stopped")

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_expired()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.exception("session.sweep.failed", exc_info=exc)

    def _live(self, session_id: str) -> Session | None:
        # Caller holds the lock.
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            self._discard(session_id)
            logger.info("session.expired", session_id=session_id, user_id=session.user_id)
            return None
        return session

    def _discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def _touch(self, session: Session, now: datetime) -> None:
        session.last_activity_at = now
        session.expires_at = now + self.ttl

    @staticmethod
    def _new_session_id() -> str:
        return f"session_{uuid.uuid4().hex}"
