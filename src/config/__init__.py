"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="escalation-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/incidents",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation Engine ==========
    escalation_store_backend: Literal["database", "memory"] = Field(
        default="database",
        description="Timer storage backend ('memory' is single-process only)"
    )
    escalation_policy_path: Path = Field(
        default=Path("escalation_policies.yaml"),
        description="Path to escalation policy YAML file"
    )
    escalation_sweep_interval: int = Field(
        default=60,
        description="Seconds between escalation sweeps (0 disables the scheduler)",
        ge=0
    )
    escalation_max_attempts: int = Field(
        default=3,
        description="Conditional-write attempts before reporting a conflict",
        ge=1,
        le=10
    )
    escalation_retry_backoff_seconds: float = Field(
        default=0.05,
        description="Base delay for exponential backoff between write attempts",
        ge=0.0,
        le=5.0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalation notifications"
    )
    slack_channel: str = Field(
        default="#incident-escalations",
        description="Slack channel for escalation notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    incident_base_url: str = Field(
        default="https://incidents.example.com/incidents",
        description="Base URL used to link incidents in notifications"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def sweep_enabled(self) -> bool:
        """Whether the in-process sweep scheduler should run."""
        return self.escalation_sweep_interval > 0


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class IncidentPriority(str, Enum):
    """Incident priority levels known to the default policy table."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TimerStatus(str, Enum):
    """Escalation timer states."""
    RUNNING = "running"
    PAUSED = "paused"
    ESCALATED = "escalated"
    RESOLVED = "resolved"

    @property
    def is_terminal(self) -> bool:
        return self in (TimerStatus.ESCALATED, TimerStatus.RESOLVED)


class EscalationEventKind(str, Enum):
    """Kinds of entries in the escalation history log."""
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class UrgencyLevel(str, Enum):
    """How close a timer is to its deadline."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    OVERDUE = "overdue"


# Fallback durations (minutes) when no type-specific policy matches
DEFAULT_PRIORITY_TIMEOUT_MINUTES = {
    IncidentPriority.URGENT.value: 2,
    IncidentPriority.HIGH.value: 5,
    IncidentPriority.MEDIUM.value: 15,
    IncidentPriority.LOW.value: 30,
}
DEFAULT_GLOBAL_TIMEOUT_MINUTES = 15
