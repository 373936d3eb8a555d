"""
Configuration management using Pydantic Settings.

All configuration is loaded from environment variables with sensible defaults.
Use a .env file for local development.

Environment Variables:
    EMBEDDING_PROVIDER: Embedding backend ("openai" or "huggingface")
    OPENAI_API_KEY: OpenAI API key (required for the openai provider)
    HF_API_KEY: HuggingFace API key (required for the huggingface provider)
    EMBEDDING_MODEL: Model used for chunk/query embeddings
    EMBEDDING_DIMENSION: Dimension of embedding vectors
    CHUNK_SIZE: Character budget for email body chunks
    DATABASE_PATH: Path to the SQLite database file
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Embedding Provider
    # ==========================================================================
    embedding_provider: Literal["openai", "huggingface"] = Field(
        default="openai",
        description="Which embedding API to call for chunks and queries",
    )
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key (openai provider only)",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible embeddings API",
    )
    hf_api_key: Optional[SecretStr] = Field(
        default=None,
        description="HuggingFace API key (huggingface provider only)",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
    )
    embedding_dimension: int = Field(
        default=1536,
        ge=1,
        description="Dimension of embedding vectors (must match model)",
    )
    embedding_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for a single embedding request",
    )
    embedding_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per chunk before ingestion gives up on a provider error",
    )
    embedding_retry_wait: float = Field(
        default=1.0,
        ge=0.0,
        description="Exponential backoff multiplier (seconds) between embedding attempts",
    )

    # ==========================================================================
    # Chunking Configuration
    # ==========================================================================
    chunk_size: int = Field(
        default=2000,
        ge=1,
        description="Character budget for a single email body chunk",
    )

    # ==========================================================================
    # Storage Configuration
    # ==========================================================================
    database_path: Path = Field(
        default=Path("data/mailrag.db"),
        description="Path to the SQLite database holding emails and chunks",
    )

    # ==========================================================================
    # Retrieval Configuration
    # ==========================================================================
    similarity_threshold: float = Field(
        default=0.3,
        ge=-1.0,
        le=1.0,
        description="Default minimum cosine similarity (exclusive) for matches",
    )
    retrieval_limit: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Default number of matches returned by a search",
    )

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="Host to bind API server",
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for API server",
    )

    # ==========================================================================
    # Observability Configuration
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # ==========================================================================
    # Validators
    # ==========================================================================
    @field_validator("database_path")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        """Resolve paths to absolute paths."""
        return v.resolve()

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def openai_api_key_value(self) -> Optional[str]:
        """Get the actual OpenAI key value (use sparingly)."""
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None

    @property
    def hf_api_key_value(self) -> Optional[str]:
        """Get the actual HuggingFace key value (use sparingly)."""
        if self.hf_api_key:
            return self.hf_api_key.get_secret_value()
        return None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    Call `get_settings.cache_clear()` to reload settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience alias
settings = get_settings()
