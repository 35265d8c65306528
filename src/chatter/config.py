"""Configuration management for chatter."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ApiKeyNotConfiguredError, ModelNotConfiguredError

DEFAULT_MODEL = "openrouter:openai/gpt-4o-mini"
DEFAULT_HOME = Path.home() / ".chatter"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHATTER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model configuration
    model: str = Field(default=DEFAULT_MODEL, description="Primary model in provider:model form")
    checker_model: str | None = Field(default=None, description="Checker model, defaults to the primary model")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=2048, ge=1, description="Maximum tokens for responses")
    model_timeout_seconds: int = Field(default=60, ge=1, description="Timeout for one model call")
    system_prompt: str = Field(default="", description="Base system prompt for every user")

    # Storage
    home: Path = Field(default=DEFAULT_HOME, description="Directory for durable state")
    history_file: Path | None = Field(default=None, description="Interaction log path, defaults to <home>")
    pages_dir: Path | None = Field(default=None, description="Local page store, defaults to <home>/pages")

    # Conversation policy
    elicitation_budget: int = Field(default=15, ge=1, description="Turn budget of one elicitation dialogue")
    elicitation_hint_threshold: int = Field(default=2, ge=0, description="Remaining turns that trigger a hint")
    max_attempts: int = Field(default=5, ge=1, description="Attempts for workflow retry loops")
    chat_attempts: int = Field(default=2, ge=1, description="Attempts for a plain chat turn")
    checker_attempts: int = Field(default=2, ge=1, description="Attempts for a checked elicitation turn")
    tool_depth: int = Field(default=3, ge=0, description="Maximum nested tool-call rounds per turn")

    # Telegram
    telegram_token: str | None = Field(default=None, description="Telegram bot token")
    telegram_allow_from: Annotated[set[str], NoDecode] = Field(
        default_factory=set, description="Allowed user ids or usernames"
    )

    # Document-summary workflow
    summary_parent_page: str = Field(default="", description="Parent page for published summaries")
    summary_search_limit: int = Field(default=20, ge=1, description="Items collected per search")
    summary_time_range: str = Field(default="today", description="Time range passed to the data source")

    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("telegram_allow_from", mode="before")
    @classmethod
    def _split_allow_from(cls, value: object) -> object:
        if isinstance(value, str):
            return {item.strip() for item in value.split(",") if item.strip()}
        return value

    @property
    def resolved_checker_model(self) -> str:
        return self.checker_model or self.model

    def resolve_home(self) -> Path:
        home = self.home.expanduser()
        home.mkdir(parents=True, exist_ok=True)
        return home

    def resolve_history_file(self) -> Path:
        if self.history_file is not None:
            return self.history_file.expanduser()
        return self.resolve_home() / "history.jsonl"

    def resolve_pages_dir(self) -> Path:
        if self.pages_dir is not None:
            return self.pages_dir.expanduser()
        return self.resolve_home() / "pages"

    def require_model(self) -> None:
        """Validate the model settings before any conversation starts."""
        if not self.model.strip():
            raise ModelNotConfiguredError("Model not configured. Set CHATTER_MODEL (e.g., 'openai:gpt-4o-mini').")
        if not self.api_key:
            raise ApiKeyNotConfiguredError("API key not configured. Set CHATTER_API_KEY.")


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Args:
        overrides: Optional field overrides, e.g. from CLI flags

    Returns:
        Settings instance
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    return Settings(**values)
