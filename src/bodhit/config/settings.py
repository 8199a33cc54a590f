"""Application settings using Pydantic."""

import os
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default=os.getenv("ENVIRONMENT", "development"),
        description="Deployment environment (development|production|test)",
    )

    # Assistant provider
    chat_url: str = Field(
        default="http://localhost:54321/functions/v1/bodhit-chat",
        description="Streaming chat endpoint of the assistant provider",
    )
    chat_api_key: str = Field(
        default="",
        description="Bearer key sent with every chat request",
    )
    chat_connect_timeout_s: float = Field(
        default=10.0,
        description="Connect timeout (seconds) for the chat endpoint.",
    )
    chat_read_timeout_s: float | None = Field(
        default=None,
        description="Read timeout (seconds) between chunks. None waits indefinitely.",
    )

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./bodhit.db"

    # Conversation presentation
    conversation_title_prefix: str = "BODHIT"
    conversation_title_max_chars: int = Field(
        default=48,
        description="Characters of the latest user message kept in the conversation title",
    )
    export_filename_prefix: str = Field(
        default="bodhit-project",
        description="Prefix for project export downloads when no filename is given",
    )

    # Observability
    log_level: str = "INFO"

    @field_validator("chat_connect_timeout_s")
    @classmethod
    def validate_connect_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("CHAT_CONNECT_TIMEOUT_S must be positive")
        return v

    @model_validator(mode="after")
    def validate_chat_key(self) -> "Settings":
        """Refuse to talk to the provider anonymously in production."""
        if self.environment == "production" and not self.chat_api_key:
            raise ValueError("CHAT_API_KEY is required in production.")
        return self


# Global settings instance
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazily construct Settings so tests can set env vars before first access.
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()


class _SettingsProxy:
    """Lazy proxy for Settings.

    This avoids eager settings instantiation at import time, which can make tests
    order-dependent when env vars are changed during `pytest_configure()`.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SettingsProxy {get_settings()!r}>"


settings = _SettingsProxy()
