"""
Configuration management using Pydantic BaseSettings.

Loads settings from environment variables and .env files with type validation
and sensible defaults.
"""

from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, ConfigDict


class Settings(BaseSettings):
    """
    Application configuration settings.

    Loads from environment variables and .env file. All settings are typed
    and validated with sensible defaults.
    """

    # ============================================================================
    # LLM Configuration
    # ============================================================================

    llm_provider: Literal["claude", "ollama"] = Field(
        default="claude",
        description="LLM provider to use for analysis (claude or ollama)"
    )

    claude_api_key: str = Field(
        default="",
        description="Anthropic Claude API key"
    )

    claude_model: str = Field(
        default="claude-3-5-sonnet-20241022",
        description="Claude model used for file reviews"
    )

    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL for local Ollama instance"
    )

    ollama_model: str = Field(
        default="llama3",
        description="Ollama model used for file reviews"
    )

    llm_timeout_seconds: float = Field(
        default=60.0,
        description="Timeout for a single LLM call"
    )

    # ============================================================================
    # GitHub & Webhook Integration
    # ============================================================================

    webhook_secret: str = Field(
        default="",
        description="Secret for verifying GitHub webhook signatures"
    )

    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API"
    )

    github_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single GitHub API request"
    )

    # ============================================================================
    # Review Pipeline
    # ============================================================================

    review_max_files: int = Field(
        default=10,
        description="Maximum number of changed files analyzed per pull request"
    )

    file_fetch_delay_seconds: float = Field(
        default=0.5,
        description="Pause between consecutive file content fetches"
    )

    analysis_delay_seconds: float = Field(
        default=1.0,
        description="Pause between consecutive LLM calls"
    )

    upstream_max_attempts: int = Field(
        default=3,
        description="Attempts per GitHub/LLM call before the call counts as failed"
    )

    upstream_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay of the exponential retry backoff"
    )

    post_review_comments: bool = Field(
        default=True,
        description="Post the review summary back to the pull request"
    )

    # ============================================================================
    # Database Configuration
    # ============================================================================

    database_url: str = Field(
        default="sqlite:///./prreview.db",
        description="Database connection URL (sqlite:// or postgresql://)"
    )

    # ============================================================================
    # Server Configuration
    # ============================================================================

    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to"
    )

    port: int = Field(
        default=8000,
        description="Server port to listen on"
    )

    # ============================================================================
    # Logging Configuration
    # ============================================================================

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================================================
    # Validation Methods
    # ============================================================================

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate that LLM provider is either 'claude' or 'ollama'."""
        if v not in ["claude", "ollama"]:
            raise ValueError("llm_provider must be 'claude' or 'ollama'")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate that database URL uses supported schemes."""
        if not (v.startswith("sqlite://") or v.startswith("postgresql://") or v.startswith("postgres://")):
            raise ValueError(
                "database_url must start with 'sqlite://', 'postgresql://', or 'postgres://'"
            )
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is within valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("review_max_files", "upstream_max_attempts")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Limits must allow at least one file / attempt."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator(
        "file_fetch_delay_seconds",
        "analysis_delay_seconds",
        "upstream_backoff_seconds",
    )
    @classmethod
    def validate_non_negative_delay(cls, v: float) -> float:
        """Delays cannot be negative."""
        if v < 0:
            raise ValueError("delay must be >= 0")
        return v

    @field_validator("llm_timeout_seconds", "github_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Timeouts must be positive."""
        if v <= 0:
            raise ValueError("timeout must be > 0")
        return v

    # ============================================================================
    # Pydantic Settings Configuration
    # ============================================================================

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown environment variables
    )


# Global settings instance
settings = Settings()
