"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Runtime knobs (database, scheduler intervals, scan window) come from the
environment. Lifecycle policy (SLA thresholds, delays, roster, canned
resolution notes) lives in a YAML file, see ``lifecycle_config_path``.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="roomwatch-ticketing", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/roomwatch",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Ticket Lifecycle ==========
    lifecycle_config_path: Path = Field(
        default=Path("lifecycle_config.yaml"),
        description="Path to lifecycle policy YAML file"
    )
    lifecycle_poll_interval: int = Field(
        default=5,
        description="Seconds between polls for due lifecycle transitions",
        ge=1
    )
    lifecycle_batch_size: int = Field(
        default=100,
        description="Max tickets advanced per poll",
        ge=1
    )

    # ========== Violation Detection ==========
    detection_window_minutes: int = Field(
        default=5,
        description="Trailing window of sensor readings analysed per scan",
        ge=1
    )
    detection_scan_interval: int = Field(
        default=60,
        description="Seconds between automatic scans (0 disables the job)",
        ge=0
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

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketType(str):
    """Kinds of facilities work orders."""
    CAPACITY_VIOLATION = "capacity_violation"
    MAINTENANCE = "maintenance"
    ENVIRONMENTAL = "environmental"


class TicketSeverity(str):
    """Ticket severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TicketStatus(str):
    """Ticket workflow statuses, in lifecycle order."""
    QUEUED = "queued"
    PROCESSING = "processing"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"


class SLAHealth(str):
    """SLA health states reported on read."""
    ON_TRACK = "on-track"
    AT_RISK = "at-risk"
    OVERDUE = "overdue"


class ViolationReason(str):
    """Detection rules that can justify a capacity violation."""
    OVER_CAPACITY = "over_capacity"
    HIGH_OCCUPANCY_POOR_AIR = "high_occupancy_poor_air"


class ExternalSystem(str):
    """Label of the downstream ticketing system (no API calls are made)."""
    SERVICENOW = "servicenow"


# ========== Lists for validation ==========

VALID_TICKET_TYPES = [
    TicketType.CAPACITY_VIOLATION, TicketType.MAINTENANCE, TicketType.ENVIRONMENTAL
]
VALID_SEVERITIES = [
    TicketSeverity.LOW, TicketSeverity.MEDIUM,
    TicketSeverity.HIGH, TicketSeverity.CRITICAL
]
# Order matters: a ticket only ever moves to the right.
STATUS_ORDER = [
    TicketStatus.QUEUED, TicketStatus.PROCESSING,
    TicketStatus.ASSIGNED, TicketStatus.RESOLVED
]
ACTIVE_STATUSES = [TicketStatus.QUEUED, TicketStatus.PROCESSING, TicketStatus.ASSIGNED]
VALID_PRIORITIES = [1, 2, 3, 4]
