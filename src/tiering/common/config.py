"""Centralized configuration management for the tiering platform.

This module provides type-safe configuration using Pydantic Settings with
environment variable override support. Configuration is hierarchical:
- WarehouseConfig: DuckDB database and partition sizing settings
- LifecycleConfig: Policy scheduling and retention floors
- RetrievalConfig: Archive retrieval limits and restore latency
- SessionConfig: Default session parameters
- ObservabilityConfig: Logging and metrics settings
- TieringConfig: Main configuration aggregating all sub-configs

Environment variables follow the pattern: TIERING_{COMPONENT}_{PARAMETER}

Examples:
    TIERING_WAREHOUSE_DATABASE_PATH=/var/lib/tiering/warehouse.duckdb
    TIERING_LIFECYCLE_ACTIVATION_DELAY_HOURS=24
    TIERING_SESSION_STATEMENT_TIMEOUT_IN_SECONDS=172800

Usage:
    from tiering.common.config import config

    print(config.warehouse.database_path)
    print(config.lifecycle.cool_min_archive_days)

    # Configuration is validated on load
    # Invalid values will raise ValidationError
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WarehouseConfig(BaseSettings):
    """DuckDB warehouse configuration.

    Controls where the warehouse database lives and how partitions are
    sized into files for retrieval cost estimates.
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERING_WAREHOUSE_", case_sensitive=False, extra="ignore",
    )

    database_path: str = Field(
        default="tiering.duckdb",
        description="DuckDB database file (':memory:' for an ephemeral warehouse)",
    )

    cloud_provider: Literal["aws", "azure", "gcp"] = Field(
        default="aws", description="Cloud provider hosting the account",
    )

    rows_per_file: int = Field(
        default=10_000, description="Rows stored per physical file of a partition", ge=1,
    )

    estimated_row_bytes: int = Field(
        default=256, description="Average stored row size used for byte estimates", ge=1,
    )

    memory_limit: str = Field(default="1GB", description="DuckDB memory limit")

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        """Ensure database path is not empty."""
        if not v or not v.strip():
            raise ValueError("database_path cannot be empty")
        return v.strip()


class LifecycleConfig(BaseSettings):
    """Storage lifecycle policy scheduling.

    Mirrors the platform behaviour: policies wait roughly a day after
    attachment, then run once a day.
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERING_LIFECYCLE_", case_sensitive=False, extra="ignore",
    )

    activation_delay_hours: float = Field(
        default=24.0, description="Delay between attachment and first execution", ge=0,
    )

    evaluation_interval_hours: float = Field(
        default=24.0, description="Minimum interval between executions", gt=0,
    )

    cool_min_archive_days: int = Field(
        default=90, description="Minimum ARCHIVE_FOR_DAYS for the COOL tier", ge=1,
    )

    cold_min_archive_days: int = Field(
        default=180, description="Minimum ARCHIVE_FOR_DAYS for the COLD tier", ge=1,
    )


class RetrievalConfig(BaseSettings):
    """Archive retrieval limits and simulated restore latency."""

    model_config = SettingsConfigDict(
        env_prefix="TIERING_RETRIEVAL_", case_sensitive=False, extra="ignore",
    )

    cold_max_files: int = Field(
        default=1_000_000, description="Maximum files per restore from the COLD tier", ge=1,
    )

    cool_max_restore_seconds: int = Field(
        default=0, description="Worst-case restore time from the COOL tier", ge=0,
    )

    cold_max_restore_seconds: int = Field(
        default=172_800, description="Worst-case restore time from the COLD tier (48 hours)", ge=0,
    )

    latency_scale: float = Field(
        default=0.0,
        description="Fraction of the worst-case restore time actually waited (0 = instant)",
        ge=0.0,
        le=1.0,
    )


class SessionConfig(BaseSettings):
    """Default session parameters for new sessions."""

    model_config = SettingsConfigDict(
        env_prefix="TIERING_SESSION_", case_sensitive=False, extra="ignore",
    )

    statement_timeout_in_seconds: int = Field(
        default=3600, description="Statement timeout applied to retrievals", ge=0,
    )

    abort_detached_query: bool = Field(
        default=True, description="Abort running statements when the client detaches",
    )


class ObservabilityConfig(BaseSettings):
    """Logging and metrics configuration.

    Controls structured logging level and Prometheus metrics collection.
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERING_OBSERVABILITY_", case_sensitive=False, extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    json_logs: bool = Field(default=False, description="Render logs as JSON")

    prometheus_port: int = Field(
        default=9090, description="Prometheus metrics port", ge=1024, le=65535,
    )

    enable_metrics: bool = Field(default=True, description="Enable Prometheus metrics collection")


class TieringConfig(BaseSettings):
    """Main tiering platform configuration.

    Aggregates all sub-configurations into a single config object.
    Automatically loads from environment variables with TIERING_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERING_",
        case_sensitive=False,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(
        default="local", description="Deployment environment",
    )

    # Sub-configurations
    warehouse: WarehouseConfig = Field(default_factory=WarehouseConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Global singleton instance
# Import this in other modules: from tiering.common.config import config
config = TieringConfig()
