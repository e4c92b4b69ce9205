"""
Prometheus metrics registry for the tiering platform.

Pre-registers all metrics at module load time for better performance
and fail-fast behavior on duplicate metric names.

Metrics follow Prometheus naming conventions:
- snake_case names
- Base unit suffixes (_seconds, _bytes, _total)
- Descriptive help text
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ==============================================================================
# Configuration
# ==============================================================================

# Standard labels applied to all metrics
STANDARD_LABELS = ["service", "environment", "component"]

# Labels for per-table lifecycle metrics
TABLE_LABELS = STANDARD_LABELS + ["table"]

# Policy executions are short; a full day of partitions fits well under a minute
EXECUTION_BUCKETS = [
    0.010,  # 10ms
    0.050,  # 50ms
    0.100,  # 100ms
    0.500,  # 500ms
    1.000,  # 1s
    5.000,  # 5s
    30.000,  # 30s
    60.000,  # 1m
]

# Retrievals range from instant (COOL) to two days (COLD)
RETRIEVAL_BUCKETS = [
    0.1,
    1.0,
    10.0,
    60.0,
    600.0,
    3600.0,  # 1h
    21600.0,  # 6h
    86400.0,  # 24h
    172800.0,  # 48h
]

# ==============================================================================
# Platform Information
# ==============================================================================

PLATFORM_INFO = Info(
    "tiering_platform",
    "Warehouse tiering build information",
)

# ==============================================================================
# Lifecycle Metrics
# ==============================================================================

POLICY_EXECUTIONS_TOTAL = Counter(
    "tiering_policy_executions_total",
    "Total storage lifecycle policy executions",
    TABLE_LABELS + ["policy", "status"],
)

POLICY_EXECUTION_DURATION_SECONDS = Histogram(
    "tiering_policy_execution_duration_seconds",
    "Storage lifecycle policy execution duration",
    TABLE_LABELS + ["policy"],
    buckets=EXECUTION_BUCKETS,
)

PARTITION_TRANSITIONS_TOTAL = Counter(
    "tiering_partition_transitions_total",
    "Partition state transitions",
    TABLE_LABELS + ["transition"],
)

ROWS_ARCHIVED_TOTAL = Counter(
    "tiering_rows_archived_total",
    "Rows moved from the table into archive storage",
    TABLE_LABELS + ["tier"],
)

ROWS_EXPIRED_TOTAL = Counter(
    "tiering_rows_expired_total",
    "Archived rows permanently deleted after retention",
    TABLE_LABELS,
)

PARTITIONS_BY_STATE = Gauge(
    "tiering_partitions",
    "Partition count by lifecycle state",
    TABLE_LABELS + ["state"],
)

# ==============================================================================
# Retrieval Metrics
# ==============================================================================

RETRIEVALS_TOTAL = Counter(
    "tiering_retrievals_total",
    "Archive retrieval operations",
    TABLE_LABELS + ["tier", "status"],
)

RETRIEVAL_FILES_TOTAL = Counter(
    "tiering_retrieval_files_total",
    "Files restored from archive storage",
    TABLE_LABELS + ["tier"],
)

RETRIEVAL_DURATION_SECONDS = Histogram(
    "tiering_retrieval_duration_seconds",
    "Archive retrieval wall-clock duration",
    TABLE_LABELS + ["tier"],
    buckets=RETRIEVAL_BUCKETS,
)

RETRIEVAL_ESTIMATES_TOTAL = Counter(
    "tiering_retrieval_estimates_total",
    "EXPLAIN estimates produced for archive retrievals",
    TABLE_LABELS,
)

# ==============================================================================
# Metric Registry
# ==============================================================================

_METRIC_REGISTRY = {
    # Lifecycle
    "policy_executions_total": POLICY_EXECUTIONS_TOTAL,
    "policy_execution_duration_seconds": POLICY_EXECUTION_DURATION_SECONDS,
    "partition_transitions_total": PARTITION_TRANSITIONS_TOTAL,
    "rows_archived_total": ROWS_ARCHIVED_TOTAL,
    "rows_expired_total": ROWS_EXPIRED_TOTAL,
    "partitions": PARTITIONS_BY_STATE,

    # Retrieval
    "retrievals_total": RETRIEVALS_TOTAL,
    "retrieval_files_total": RETRIEVAL_FILES_TOTAL,
    "retrieval_duration_seconds": RETRIEVAL_DURATION_SECONDS,
    "retrieval_estimates_total": RETRIEVAL_ESTIMATES_TOTAL,
}


def get_metric(metric_name: str) -> object:
    """
    Get a pre-registered metric by name.

    Args:
        metric_name: Metric name (without tiering_ prefix)

    Returns:
        Prometheus metric object (Counter, Gauge, or Histogram)

    Raises:
        KeyError: If metric name not found in registry
    """
    if metric_name not in _METRIC_REGISTRY:
        raise KeyError(
            f"Metric '{metric_name}' not found in registry. "
            f"Available metrics: {sorted(_METRIC_REGISTRY.keys())}"
        )
    return _METRIC_REGISTRY[metric_name]


def get_counter(metric_name: str) -> Counter:
    """Get a Counter metric."""
    return get_metric(metric_name)


def get_gauge(metric_name: str) -> Gauge:
    """Get a Gauge metric."""
    return get_metric(metric_name)


def get_histogram(metric_name: str) -> Histogram:
    """Get a Histogram metric."""
    return get_metric(metric_name)


def initialize_platform_info(version: str, environment: str, deployment: str):
    """
    Initialize platform information metric.

    Args:
        version: Platform version (e.g., "0.1.0")
        environment: Environment name (e.g., "local", "production")
        deployment: Deployment ID or timestamp
    """
    PLATFORM_INFO.info({
        "version": version,
        "environment": environment,
        "deployment": deployment,
    })
