"""SkillHub settings.

Values come from environment variables (case-insensitive) and an optional
``.env`` file. The ``ENVIRONMENT`` variable selects a profile that
overrides the logging, tracing and storage knobs after everything else
has been read.

Profiles:
    - development: DEBUG console logs, no tracing
    - production: JSON logs, tracing on, DEBUG capped at INFO
    - staging: same shape as production at INFO
    - testing: in-memory store, ERROR logs only

Example:
    >>> from skillhub.config import settings
    >>> settings.preview_length
    30
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_DB_NAME = "skillhub.db"
_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Environment(StrEnum):
    """Deployment profile selected with ``ENVIRONMENT``."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


# Fields each profile pins, applied after env/.env parsing.
_PROFILE_OVERRIDES: dict[Environment, dict[str, object]] = {
    Environment.DEVELOPMENT: {"log_level": "DEBUG", "log_json": False, "enable_tracing": False},
    Environment.PRODUCTION: {"log_json": True, "enable_tracing": True},
    Environment.STAGING: {"log_level": "INFO", "log_json": True, "enable_tracing": True},
    Environment.TESTING: {
        "database_path": Path(":memory:"),
        "log_level": "ERROR",
        "log_to_file": False,
        "log_json": False,
        "enable_tracing": False,
    },
}


class Settings(BaseSettings):
    """Runtime knobs for the store, notifications, push and observability.

    Attributes:
        environment: Active profile
        data_dir: Where the SQLite file and log file live
        database_path: SQLite file holding the aggregates
        preview_length: Comment characters copied into a NEW_COMMENT preview
        fallback_actor_name: Shown when an actor's profile can't be read
        cas_max_attempts: Tries per optimistic read-modify-write
        cas_backoff_seconds: Ceiling of the jittered pause between tries
        push_queue_size: Buffered payloads per connected recipient
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Profile name: development, production, testing or staging",
    )

    # Storage
    data_dir: Path = Field(Path("./data"), description="Directory for the database and logs")
    database_path: Path = Field(
        Path(_DEFAULT_DB_NAME),
        description="SQLite file; a bare default is moved under data_dir",
    )

    # Notifications
    preview_length: int = Field(
        30,
        ge=1,
        le=500,
        description="Comment characters kept before the ellipsis",
    )
    fallback_actor_name: str = Field(
        "Someone",
        min_length=1,
        description="Actor name used when the profile lookup fails",
    )

    # Optimistic concurrency
    cas_max_attempts: int = Field(5, ge=1, le=50, description="Tries before VersionConflictError")
    cas_backoff_seconds: float = Field(
        0.01,
        ge=0.0,
        le=5.0,
        description="Upper bound of the random wait between tries, in seconds",
    )

    # Push
    push_queue_size: int = Field(100, ge=1, le=10_000, description="Per-user live queue bound")

    # Logging
    log_level: str = Field(default="INFO", description="Loguru level name")
    log_to_file: bool = Field(default=False, description="Also write data_dir/skillhub.log")
    log_json: bool = Field(default=False, description="One JSON object per log line")

    # Tracing
    enable_tracing: bool = Field(default=False, description="Install an OpenTelemetry tracer provider")
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="gRPC collector address; spans go to the console when unset",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def resolve_data_dir(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def place_database_under_data_dir(self) -> "Settings":
        if self.database_path == Path(_DEFAULT_DB_NAME):
            self.database_path = self.data_dir / _DEFAULT_DB_NAME
        return self

    @model_validator(mode="after")
    def apply_profile(self) -> "Settings":
        """Pin the fields the active profile controls.

        Production keeps an explicit WARNING/ERROR level but never runs
        at DEBUG.
        """
        for field, value in _PROFILE_OVERRIDES[self.environment].items():
            setattr(self, field, value)
        if self.environment == Environment.PRODUCTION and self.log_level in {"TRACE", "DEBUG"}:
            self.log_level = "INFO"
        return self

    @property
    def is_in_memory(self) -> bool:
        return str(self.database_path) == ":memory:"

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL for ``database_path``."""
        return "sqlite://" if self.is_in_memory else f"sqlite:///{self.database_path}"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "skillhub.log"

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        return self.environment == Environment.STAGING


settings = Settings()
