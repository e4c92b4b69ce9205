"""
Unit tests for the logging and metrics wrappers.
"""

import pytest
from prometheus_client import REGISTRY

from tiering.common.logging import (
    TieringLogger,
    add_correlation_id,
    clear_correlation_id,
    get_logger,
    set_correlation_id,
)
from tiering.common.metrics import MetricsClient, create_component_metrics


class TestCorrelationId:
    """Test suite for correlation id propagation."""

    def teardown_method(self):
        clear_correlation_id()

    def test_added_when_set(self):
        set_correlation_id("exec-1")
        assert add_correlation_id(None, "info", {"event": "x"})["correlation_id"] == "exec-1"

    def test_absent_when_cleared(self):
        set_correlation_id("exec-1")
        clear_correlation_id()
        assert "correlation_id" not in add_correlation_id(None, "info", {"event": "x"})

    def test_get_logger(self):
        logger = get_logger(__name__, component="lifecycle", table="transactions")

        assert isinstance(logger, TieringLogger)
        assert isinstance(logger.bind(partition_id=3), TieringLogger)


class TestMetricsClient:
    """Test suite for MetricsClient."""

    LABELS = {"table": "metrics_test", "tier": "cool"}

    def _value(self, status: str) -> float:
        return REGISTRY.get_sample_value(
            "tiering_retrievals_total",
            {
                "service": "tiering",
                "environment": "test",
                "component": "retrieval",
                **self.LABELS,
                "status": status,
            },
        ) or 0.0

    def test_increment(self):
        metrics = MetricsClient(
            default_labels={"service": "tiering", "environment": "test", "component": "retrieval"},
            enabled=True,
        )
        before = self._value("succeeded")

        metrics.increment("retrievals_total", labels={**self.LABELS, "status": "succeeded"})

        assert self._value("succeeded") == before + 1

    def test_disabled_client_records_nothing(self):
        metrics = MetricsClient(enabled=False)

        # Unknown names are never looked up while disabled
        metrics.increment("no_such_metric")
        metrics.gauge("no_such_metric", 1)
        metrics.histogram("no_such_metric", 1.0)

    def test_unknown_metric(self):
        with pytest.raises(KeyError, match="not found in registry"):
            MetricsClient(enabled=True).increment("no_such_metric")

    def test_component_labels(self):
        metrics = create_component_metrics("lifecycle", environment="test")

        assert metrics.default_labels == {
            "service": "tiering",
            "environment": "test",
            "component": "lifecycle",
        }
