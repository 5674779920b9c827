"""Application configuration powered by Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Strongly typed application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    project_name: str = Field(default="Pregnancy Companion Chat API")
    version: str = Field(default="0.1.0")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    openai_api_key: str | None = Field(default=None, min_length=1)
    openai_api_base: str | None = None

    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    summarizer_model: str = Field(default="gpt-4o-mini")

    langsmith_api_key: str | None = None
    langsmith_endpoint: str | None = None
    langsmith_project: str = Field(default="pregnancy-companion-chat")
    enable_tracing: bool = Field(default=False)

    cors_allowed_origins: list[str] = Field(default_factory=list)

    session_ttl_seconds: int = Field(default=30 * 60, ge=1)
    session_max_turns: int = Field(default=50, ge=2)
    session_retained_turns: int = Field(default=40, ge=1)
    summarize_after_exchanges: int = Field(default=10, ge=1)
    sweep_interval_seconds: float = Field(default=5 * 60, gt=0)
    prompt_turn_limit: int = Field(default=10, ge=1, le=50)
    summarizer_timeout_seconds: float | None = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_buffer_policy(self) -> "AppSettings":
        if self.session_retained_turns >= self.session_max_turns:
            raise ValueError("session_retained_turns must be smaller than session_max_turns")
        return self


@lru_cache
def get_settings() -> AppSettings:
    """Provide a cached singleton settings instance."""

    return AppSettings()
