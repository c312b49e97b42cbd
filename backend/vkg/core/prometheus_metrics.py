"""
Prometheus Metrics
Pipeline counters and latency histograms on a private registry
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Custom registry to avoid conflicts with host process metrics
registry = CollectorRegistry()

# ====================  PIPELINE METRICS ====================

vkg_queries = Counter(
    "vkg_queries_total",
    "Total number of VKG questions processed",
    ["status", "workspace_id"],
    registry=registry,
)

vkg_query_failures = Counter(
    "vkg_query_failures_total",
    "Total number of VKG pipeline failures",
    ["error_code", "workspace_id"],
    registry=registry,
)

vkg_pipeline_latency = Histogram(
    "vkg_pipeline_latency_seconds",
    "End-to-end pipeline latency in seconds",
    ["status"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0],
    registry=registry,
)

# ====================  STAGE METRICS ====================

vkg_step_duration = Histogram(
    "vkg_step_duration_seconds",
    "Pipeline step duration in seconds",
    ["step", "status"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=registry,
)

vkg_sql_attempts = Histogram(
    "vkg_sql_attempts",
    "Plan+SQL generation attempts used per question",
    buckets=[1, 2, 3, 4, 5],
    registry=registry,
)

vkg_result_rows = Histogram(
    "vkg_result_row_count",
    "Number of rows returned by federated queries",
    buckets=[0, 1, 10, 50, 100, 500, 1000],
    registry=registry,
)

# ====================  CACHE METRICS ====================

cache_hits = Counter(
    "vkg_schema_cache_hits_total",
    "Schema context cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses = Counter(
    "vkg_schema_cache_misses_total",
    "Schema context cache misses",
    ["cache_type"],
    registry=registry,
)


def record_step(step: str, status: str, duration_seconds: float) -> None:
    # Attempt suffixes would explode label cardinality
    base = step.split(" (attempt")[0]
    vkg_step_duration.labels(step=base, status=status).observe(duration_seconds)


def record_pipeline_success(workspace_id: str, duration_seconds: float, attempts: int, row_count: int) -> None:
    vkg_queries.labels(status="success", workspace_id=workspace_id).inc()
    vkg_pipeline_latency.labels(status="success").observe(duration_seconds)
    vkg_sql_attempts.observe(attempts)
    vkg_result_rows.observe(row_count)


def record_pipeline_failure(workspace_id: str, error_code: str, duration_seconds: float) -> None:
    vkg_queries.labels(status="failure", workspace_id=workspace_id).inc()
    vkg_query_failures.labels(error_code=error_code, workspace_id=workspace_id).inc()
    vkg_pipeline_latency.labels(status="failure").observe(duration_seconds)


def record_cache_lookup(cache_type: str, hit: bool) -> None:
    if hit:
        cache_hits.labels(cache_type=cache_type).inc()
    else:
        cache_misses.labels(cache_type=cache_type).inc()


def export_metrics() -> bytes:
    """Render the registry in Prometheus text format"""
    return generate_latest(registry)
