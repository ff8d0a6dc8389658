"""
Configuration and settings for the FinanceGuru backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

AIModel = Literal["openai", "deepseek", "gemini"]


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected; any SQLAlchemy URL with an asyncio driver works)
    database_url: Optional[str] = Field(default=None)
    database_echo: bool = Field(default=False)

    # Development toggle: keep everything in process memory
    use_memory_storage: bool = Field(default=False)

    # LLM providers
    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-3.5-turbo")
    deepseek_api_key: Optional[str] = Field(default=None)
    deepseek_model: str = Field(default="deepseek-chat")
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_model: str = Field(default="gemini-2.0-flash")
    default_ai_model: AIModel = Field(default="openai")
    # Answer from canned keyword advice when a provider has no key or fails
    ai_offline_fallback: bool = Field(default=False)

    # Number of stored messages sent to the model as conversation context
    chat_history_limit: int = Field(default=10, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
