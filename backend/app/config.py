"""Application configuration.

Two layers:
- Settings: process-level settings loaded from environment variables / .env
- PollerConfig: the targets file (poll interval, breaker, webhook, apps)
"""

from functools import lru_cache
from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.exceptions import ConfigError

DEFAULT_POLL_INTERVAL_MINUTES = 15
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_OPEN_COOLDOWN_SECONDS = 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API Settings
    APP_NAME: str = "Review Poller"
    APP_VERSION: str = "1.1.0"
    ENVIRONMENT: str = "development"  # development, production, testing

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Storage / targets
    DATA_DIR: str = "./data"
    TARGETS_FILE: str = "./config/apps.json"

    # CORS Settings
    ALLOWED_ORIGINS: str = "*"

    # Timeouts (seconds)
    FEED_TIMEOUT_SECONDS: float = 10.0
    PAGE_TIMEOUT_SECONDS: float = 15.0
    ALERT_TIMEOUT_SECONDS: float = 5.0
    SHUTDOWN_GRACE_SECONDS: float = 8.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()


# ---------------------------------------------------------------------------
# Targets file
# ---------------------------------------------------------------------------

class AppTarget(BaseModel):
    """One (application, country) entry of the targets file."""

    model_config = ConfigDict(populate_by_name=True)

    app_id: str = Field(..., alias="appId", min_length=1)
    country: str = Field(..., min_length=1)


class CircuitBreakerConfig(BaseModel):
    """Breaker thresholds; non-positive values fall back to defaults."""

    model_config = ConfigDict(populate_by_name=True)

    failure_threshold: int = Field(default=DEFAULT_FAILURE_THRESHOLD, alias="failureThreshold")
    open_cooldown_seconds: int = Field(default=DEFAULT_OPEN_COOLDOWN_SECONDS, alias="openCooldownSeconds")

    @field_validator("failure_threshold", "open_cooldown_seconds", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return value if value is not None else 0

    @field_validator("failure_threshold", mode="after")
    @classmethod
    def _default_threshold(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_FAILURE_THRESHOLD

    @field_validator("open_cooldown_seconds", mode="after")
    @classmethod
    def _default_cooldown(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_OPEN_COOLDOWN_SECONDS


class PollerConfig(BaseModel):
    """Targets file contents."""

    model_config = ConfigDict(populate_by_name=True)

    poll_interval_minutes: int = Field(default=DEFAULT_POLL_INTERVAL_MINUTES, alias="pollIntervalMinutes")
    webhook_url: str = Field(default="", alias="webhookUrl")
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig, alias="circuitBreaker")
    apps: list[AppTarget] = Field(default_factory=list)

    @field_validator("poll_interval_minutes", mode="before")
    @classmethod
    def _none_interval(cls, value):
        return value if value is not None else DEFAULT_POLL_INTERVAL_MINUTES

    @field_validator("poll_interval_minutes", mode="after")
    @classmethod
    def _default_interval(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_POLL_INTERVAL_MINUTES

    @field_validator("webhook_url", mode="before")
    @classmethod
    def _none_webhook(cls, value):
        return value or ""

    @field_validator("circuit_breaker", mode="before")
    @classmethod
    def _none_breaker(cls, value):
        return value if value is not None else {}

    @property
    def poll_interval_seconds(self) -> float:
        return float(self.poll_interval_minutes * 60)


def parse_poller_config(raw: Union[str, bytes, dict]) -> PollerConfig:
    """Parse a targets document (JSON text or already-decoded dict).

    Raises:
        ConfigError: If the document is not valid JSON or fails validation
    """
    try:
        if isinstance(raw, dict):
            return PollerConfig.model_validate(raw)
        return PollerConfig.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid targets configuration: {e}") from e


def load_poller_config(path: Union[str, Path]) -> PollerConfig:
    """Load the targets file from disk.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read targets file {path}: {e}") from e

    return parse_poller_config(raw)
