"""Configuration management for the Context Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")
    OPENAI_BASE_URL: str | None = Field(default=None, description="Optional OpenAI-compatible base URL")

    # Rerank providers (optional)
    COHERE_API_KEY: str | None = Field(default=None, description="Cohere API key for reranking")
    ANTHROPIC_API_KEY: str | None = Field(
        default=None, description="Anthropic API key for the listwise rerank fallback"
    )
    RERANK_FALLBACK_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for listwise rerank fallback"
    )

    # Environment
    CONTEXT_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Query expansion
    EXPANSION_MODEL: str = Field(default="gpt-4o-mini", description="Model for query expansion")
    EXPANSION_CACHE_TTL_DAYS: int = Field(
        default=30, description="Days an expansion stays valid in the cache"
    )

    # Chat completion defaults (used when the agent configuration is silent)
    DEFAULT_CHAT_MODEL: str = Field(default="gpt-4o", description="Fallback completion model")
    DEFAULT_CHAT_TEMPERATURE: float = Field(default=0.7, description="Fallback temperature")

    # Foundation tier
    FOUNDATION_PLACEHOLDER_SCORE: float = Field(
        default=0.9, description="Constant score assigned to foundation sections"
    )

    # Timeouts (seconds)
    EMBEDDING_TIMEOUT_SECONDS: float = Field(default=15.0, description="Fatal on expiry")
    EXPANSION_TIMEOUT_SECONDS: float = Field(default=8.0, description="Degrades to no expansion")
    RERANK_TIMEOUT_SECONDS: float = Field(default=8.0, description="Degrades to truncation")
    COMPLETION_TIMEOUT_SECONDS: float = Field(
        default=60.0, description="Time allowed for the completion provider to start responding"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
