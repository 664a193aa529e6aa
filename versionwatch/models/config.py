"""Application configuration model using pydantic-settings."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from versionwatch.models.scoring_policy import (
    DEFAULT_LABEL_THRESHOLDS,
    DEFAULT_WEIGHTS,
    MULTI_FACTOR_V1,
    OVERFLOW_LABEL,
    ScoringPolicy,
)


class Config(BaseSettings):
    """Application configuration loaded from environment variables and .env file.

    Variables use the VERSIONWATCH_ prefix, e.g. VERSIONWATCH_DATABASE_PATH.
    List-valued settings such as label_thresholds are given as JSON.
    """

    model_config = SettingsConfigDict(
        env_prefix="VERSIONWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_path: str = "data/versionwatch.db"
    broker_path: str | None = None
    log_level: str = "INFO"
    log_format: str = "console"

    run_timeout_seconds: int = 300
    max_delivery_attempts: int = 3
    retry_base_delay_seconds: float = 2.0
    visibility_timeout_seconds: int = 60
    poll_interval_seconds: float = 1.0
    workers_per_stage: int = 2

    fetch_timeout_seconds: int = 30
    fetch_retry_attempts: int = 2
    user_agent: str = "versionwatch/0.1 (+https://github.com/versionwatch)"

    scoring_policy_version: str = MULTI_FACTOR_V1
    scoring_weights: dict[str, float] = dict(DEFAULT_WEIGHTS)
    label_thresholds: list[tuple[str, float]] = list(DEFAULT_LABEL_THRESHOLDS)
    overflow_label: str = OVERFLOW_LABEL
    exact_similarity_limit: int = 5_000
    similarity_window_count: int = 16
    similarity_window_size: int = 500

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Ensure parent directory exists, creating it if necessary."""
        if value != ":memory:":
            Path(value).parent.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Log level must be a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            msg = f"log_level must be one of {', '.join(sorted(valid_levels))}"
            raise ValueError(msg)
        return upper_value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """Log format is either console or json."""
        lowered = value.lower()
        if lowered not in ("console", "json"):
            msg = "log_format must be 'console' or 'json'"
            raise ValueError(msg)
        return lowered

    @field_validator("max_delivery_attempts")
    @classmethod
    def validate_max_delivery_attempts(cls, value: int) -> int:
        """Max delivery attempts must be between 1 and 10."""
        if value < 1 or value > 10:
            msg = "max_delivery_attempts must be between 1 and 10"
            raise ValueError(msg)
        return value

    @field_validator("fetch_retry_attempts")
    @classmethod
    def validate_fetch_retry_attempts(cls, value: int) -> int:
        """In-process fetch attempts must be between 1 and 5."""
        if value < 1 or value > 5:
            msg = "fetch_retry_attempts must be between 1 and 5"
            raise ValueError(msg)
        return value

    @field_validator(
        "run_timeout_seconds",
        "visibility_timeout_seconds",
        "fetch_timeout_seconds",
        "workers_per_stage",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Timeouts and worker counts must be positive."""
        if value <= 0:
            msg = "value must be greater than 0"
            raise ValueError(msg)
        return value

    @property
    def resolved_broker_path(self) -> str:
        """Broker tables share the database file unless configured otherwise."""
        return self.broker_path or self.database_path

    @property
    def run_timeout(self) -> timedelta:
        """Deadline offset applied to every new run."""
        return timedelta(seconds=self.run_timeout_seconds)

    def scoring_policy(self) -> ScoringPolicy:
        """Build the single active scoring policy for this deployment."""
        return ScoringPolicy(
            version=self.scoring_policy_version,
            weights=self.scoring_weights,
            label_thresholds=self.label_thresholds,
            overflow_label=self.overflow_label,
            exact_limit=self.exact_similarity_limit,
            window_count=self.similarity_window_count,
            window_size=self.similarity_window_size,
        )
