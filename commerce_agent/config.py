from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LLMProviderName = Literal["ollama", "openai", "claude", "gemini"]
ToolMode = Literal["built-in", "mock", "mcp"]


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    env: str = Field(default="dev", alias="APP_ENV")
    debug: bool = Field(default=False, alias="APP_DEBUG")

    llm_provider: LLMProviderName = Field(default="ollama", alias="LLM_PROVIDER")
    llm_timeout_seconds: float = Field(default=60.0, alias="LLM_TIMEOUT_SECONDS")

    ollama_base_url: Optional[str] = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    ollama_model: str = Field(default="llama3.2", alias="OLLAMA_MODEL")
    ollama_timeout_seconds: float = Field(default=120.0, alias="OLLAMA_TIMEOUT_SECONDS")

    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")

    claude_api_key: str = Field(default="", alias="CLAUDE_API_KEY")
    claude_model: str = Field(default="claude-sonnet-4-20250514", alias="CLAUDE_MODEL")

    google_api_key: str = Field(default="", alias="GOOGLE_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash-lite", alias="GEMINI_MODEL")

    tool_mode: ToolMode = Field(default="built-in", alias="TOOL_MODE")
    magento_graphql_url: Optional[str] = Field(default=None, alias="MAGENTO_GRAPHQL_URL")
    magento_api_token: Optional[str] = Field(default=None, alias="MAGENTO_API_TOKEN")
    mcp_server_url: Optional[str] = Field(default=None, alias="MCP_SERVER_URL")
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")

    session_history_limit: int = Field(default=50, alias="SESSION_HISTORY_LIMIT")
    session_max_age_hours: float = Field(default=24.0, alias="SESSION_MAX_AGE_HOURS")
    session_cleanup_interval_seconds: float = Field(default=3600.0, alias="SESSION_CLEANUP_INTERVAL_SECONDS")
    session_storage_dir: Optional[str] = Field(default=None, alias="SESSION_STORAGE_DIR")

    # LangSmith / LangChain tracing
    langsmith_api_key: str | None = Field(default=None, alias="LANGSMITH_API_KEY")
    langsmith_project: str | None = Field(default=None, alias="LANGSMITH_PROJECT")
    langsmith_tracing_v2: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")

    @property
    def is_production(self) -> bool:
        return self.env.lower() in {"prod", "production"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
