"""
Prometheus metrics for the tiering service.

Modules create one client per component and address metrics by their short
name. The objects themselves live in metrics_registry.py.

    from tiering.common.metrics import create_component_metrics

    metrics = create_component_metrics("lifecycle")
    metrics.increment(
        "partition_transitions_total",
        labels={"table": "transactions", "transition": "hot_to_cool"},
    )
    metrics.gauge("partitions", 12, labels={"table": "transactions", "state": "cool"})
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from tiering.common.config import config
from tiering.common.metrics_registry import (
    get_counter,
    get_gauge,
    get_histogram,
    initialize_platform_info,
)


class MetricsClient:
    """
    Records metrics with a fixed set of default labels.

    Every call is a no-op when TIERING_OBSERVABILITY_ENABLE_METRICS is off,
    so the CLI and tests can run without touching the registry.
    """

    def __init__(
        self,
        default_labels: Optional[Dict[str, str]] = None,
        enabled: Optional[bool] = None,
    ):
        self.default_labels = default_labels or {}
        self.enabled = config.observability.enable_metrics if enabled is None else enabled

    def _labels(self, labels: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {**self.default_labels, **(labels or {})}

    def increment(
        self,
        metric_name: str,
        value: float = 1,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Add `value` to the counter `tiering_<metric_name>`."""
        if self.enabled:
            get_counter(metric_name).labels(**self._labels(labels)).inc(value)

    def gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Set the gauge `tiering_<metric_name>` to `value`."""
        if self.enabled:
            get_gauge(metric_name).labels(**self._labels(labels)).set(value)

    def histogram(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Observe `value` (usually seconds) on the histogram `tiering_<metric_name>`."""
        if self.enabled:
            get_histogram(metric_name).labels(**self._labels(labels)).observe(value)


def initialize_metrics(version: str, environment: str) -> None:
    """Publish build info. Called once when the scheduler starts serving."""
    deployment = datetime.now(timezone.utc).isoformat()
    initialize_platform_info(version, environment, deployment)


def create_component_metrics(
    component: str,
    service: str = "tiering",
    environment: Optional[str] = None,
) -> MetricsClient:
    """
    Create a metrics client labelled with service, environment and component.

    Example:
        metrics = create_component_metrics("retrieval")
        metrics.increment(
            "retrievals_total",
            labels={"table": "transactions", "tier": "cool", "status": "succeeded"},
        )
        # tiering_retrievals_total{service="tiering", environment="local",
        #     component="retrieval", table="transactions", tier="cool",
        #     status="succeeded"}
    """
    return MetricsClient(
        default_labels={
            "service": service,
            "environment": environment or config.environment,
            "component": component,
        }
    )
