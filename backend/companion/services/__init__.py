"""Service exports."""

from . import chat, lifecycle, sessions, summarizer, user_context

__all__ = ["chat", "lifecycle", "sessions", "summarizer", "user_context"]
