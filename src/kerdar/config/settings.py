"""Configuration and settings management using pydantic-settings."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="KERDAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    # Execution defaults
    default_node_timeout_s: float = Field(
        default=60.0,
        description="Per-node execute timeout in seconds",
    )
    default_max_concurrency: int = Field(
        default=1,
        description="Root branches dispatched in parallel (1 = sequential)",
    )
    cancel_poll_interval_s: float = Field(
        default=0.01,
        description="How often a waiting dispatch checks for cancellation",
    )
    max_retry_wait_s: float = Field(
        default=300.0,
        description="Upper bound on a node's waitBetweenTries",
    )

    # Outbound HTTP helper
    http_timeout_s: float = Field(
        default=30.0,
        description="Default timeout for the request helpers",
    )

    @field_validator("default_node_timeout_s", "cancel_poll_interval_s", "http_timeout_s")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("default_max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate that concurrency is at least one."""
        if v < 1:
            raise ValueError("default_max_concurrency must be >= 1")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
