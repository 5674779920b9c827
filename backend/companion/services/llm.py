"""Shared helpers for talking to chat models through LangChain."""

from __future__ import annotations

import json
import os
from json import JSONDecodeError
from typing import Any

from langchain_core.messages import AIMessage
from langchain_openai import ChatOpenAI

from companion.core.config import AppSettings
from companion.core.logging import get_logger

logger = get_logger(__name__)


def configure_tracing(settings: AppSettings) -> None:
    """Propagate LangSmith settings into LangChain environment variables."""

    if not settings.enable_tracing:
        return

    if settings.langsmith_api_key:
        os.environ.setdefault("LANGCHAIN_API_KEY", settings.langsmith_api_key)
    if settings.langsmith_endpoint:
        os.environ.setdefault("LANGCHAIN_ENDPOINT", settings.langsmith_endpoint)
    if settings.langsmith_project:
        os.environ.setdefault("LANGCHAIN_PROJECT", settings.langsmith_project)

    if os.environ.get("LANGCHAIN_API_KEY"):
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")


def create_chat_model(settings: AppSettings, *, model: str, temperature: float) -> ChatOpenAI:
    if not settings.openai_api_key:
        raise RuntimeError("OpenAI API key required for chat models.")

    return ChatOpenAI(
        model=model,
        temperature=temperature,
        openai_api_key=settings.openai_api_key,
        openai_api_base=settings.openai_api_base,
    )


def message_content_to_text(message: AIMessage | str) -> str:
    """Coerce message content into a string for downstream parsing."""

    if isinstance(message, str):
        return message

    content = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


def parse_json_object(raw: str) -> dict[str, Any]:
    """Parse a JSON object out of a model reply.

    Raises ``ValueError`` when the reply is empty, not JSON, or not an object.
    """

    cleaned = strip_code_fence(raw or "")
    if not cleaned:
        raise ValueError("Model returned an empty reply.")

    try:
        data = json.loads(cleaned)
    except JSONDecodeError as exc:
        logger.warning("llm.json.parse_failed", content=cleaned[:200])
        raise ValueError("Model reply is not valid JSON.") from exc

    if not isinstance(data, dict):
        raise ValueError("Model reply is not a JSON object.")
    return data


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("```", 2)[1] if stripped.count("```") >= 2 else stripped.lstrip("`")
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()
