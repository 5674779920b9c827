"""Domain errors raised by the conversation core."""

from __future__ import annotations


class CompanionError(Exception):
    """Base class for application-level failures."""


class SessionNotFound(CompanionError, LookupError):
    """A session id does not exist or has already expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found or expired: {session_id}")
        self.session_id = session_id


class SummarizationFailed(CompanionError):
    """The summarizer errored, timed out or produced an invalid payload."""
