"""
Configuration management for Sage Codex

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Literal["anthropic", "openai"] = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Sage-Codex"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    allowed_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated CORS origins",
    )

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")

    # Default model settings
    default_provider: Literal["anthropic", "openai"] = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sage.db",
        description="Database connection URL"
    )

    # Conversation
    recent_window: int = Field(default=10, description="Messages kept verbatim")
    max_history_messages: int = Field(default=30, description="Hard cap on history sent upstream")
    max_compressed_length: int = Field(default=200, description="Max characters of a compressed message")
    max_tool_turns: int = Field(default=5, description="Max model rounds per user turn")

    # Adventure
    version_history_limit: int = Field(default=10, description="Prior values kept per field")

    # Transport
    reconnect_interval_ms: int = Field(default=1000, description="Delay before a reconnect attempt")
    max_reconnect_attempts: int = Field(default=5, description="Reconnect attempts before giving up")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: str) -> str:
        return v.strip() if v else ""

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.allowed_origins:
            return []
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
        }

        if provider == self.default_provider:
            model = self.default_model
        else:
            model = model_map.get(provider, self.default_model)

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
