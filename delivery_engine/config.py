"""Configuration management for the delivery engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis Configuration (Local Mirror Store)
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    mirror_channel: str = Field(
        default="mirror:changes",
        description="Pub/sub channel announcing mirror writes to other processes",
    )

    # Remote Task Gateway
    gateway_base_url: str = Field(
        default="http://localhost:5000/api", description="Backend task API base URL"
    )
    gateway_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for a single gateway call"
    )
    poll_interval_seconds: float = Field(
        default=15.0, gt=0, description="Interval between gateway refreshes"
    )

    # Lifecycle Settings
    start_online: bool = Field(
        default=False, description="Online flag used when none is persisted"
    )
    confirmation_code_length: int = Field(
        default=4, ge=4, le=8, description="Digits in a generated confirmation code"
    )
    earnings_timezone: str = Field(
        default="UTC", description="Timezone used for day/week/month earnings buckets"
    )

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("earnings_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone name resolves."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
