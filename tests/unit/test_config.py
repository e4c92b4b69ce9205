"""
Unit tests for tiering configuration management.

Tests cover:
- Default values
- Environment variable overrides
- Validation of invalid values
"""

import pytest
from pydantic import ValidationError

from tiering.common.config import (
    LifecycleConfig,
    RetrievalConfig,
    SessionConfig,
    TieringConfig,
    WarehouseConfig,
)


class TestConfig:
    """Test suite for configuration management."""

    def test_default_config_loading(self):
        """Test loading default configuration values."""
        config = TieringConfig()

        assert config.environment == "local"
        assert config.warehouse.cloud_provider == "aws"
        assert config.warehouse.rows_per_file == 10_000
        assert config.lifecycle.activation_delay_hours == 24.0
        assert config.lifecycle.cool_min_archive_days == 90
        assert config.lifecycle.cold_min_archive_days == 180
        assert config.retrieval.cold_max_files == 1_000_000
        assert config.retrieval.cold_max_restore_seconds == 172_800
        assert config.session.statement_timeout_in_seconds == 3600
        assert config.session.abort_detached_query is True

    def test_environment_overrides(self, monkeypatch):
        """Test TIERING_* environment variables override defaults."""
        monkeypatch.setenv("TIERING_WAREHOUSE_DATABASE_PATH", "/tmp/warehouse.duckdb")
        monkeypatch.setenv("TIERING_WAREHOUSE_CLOUD_PROVIDER", "azure")
        monkeypatch.setenv("TIERING_SESSION_ABORT_DETACHED_QUERY", "false")
        monkeypatch.setenv("TIERING_RETRIEVAL_LATENCY_SCALE", "0.5")

        assert WarehouseConfig().database_path == "/tmp/warehouse.duckdb"
        assert WarehouseConfig().cloud_provider == "azure"
        assert SessionConfig().abort_detached_query is False
        assert RetrievalConfig().latency_scale == 0.5

    def test_empty_database_path_rejected(self):
        with pytest.raises(ValidationError, match="database_path cannot be empty"):
            WarehouseConfig(database_path="  ")

    def test_unknown_cloud_provider_rejected(self):
        with pytest.raises(ValidationError):
            WarehouseConfig(cloud_provider="oracle")

    def test_non_positive_rows_per_file_rejected(self):
        with pytest.raises(ValidationError):
            WarehouseConfig(rows_per_file=0)

    def test_latency_scale_bounds(self):
        with pytest.raises(ValidationError):
            RetrievalConfig(latency_scale=1.5)

    def test_evaluation_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            LifecycleConfig(evaluation_interval_hours=0)
