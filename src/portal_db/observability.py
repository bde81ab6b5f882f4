"""
Prometheus metrics for the portal database connection pool.
"""

import logging
from typing import Optional, Tuple

from prometheus_client import (
    Counter, Histogram, Gauge,
    REGISTRY, CONTENT_TYPE_LATEST, generate_latest
)

from portal_db.pool_metrics import PoolMetrics

logger = logging.getLogger(__name__)

# ============================================================================
# POOL STATE METRICS
# ============================================================================
try:
    POOL_CONNECTIONS = Gauge(
        'portal_db_pool_connections',
        'Pooled connections by state',
        ['state']
    )
except ValueError as e:
    logger.error(f"Failed to create POOL_CONNECTIONS metric: {e}")
    POOL_CONNECTIONS = None

try:
    POOL_WAITING_REQUESTS = Gauge(
        'portal_db_pool_waiting_requests',
        'Callers blocked in acquire()'
    )
except ValueError:
    POOL_WAITING_REQUESTS = None

try:
    POOL_HEALTH_SCORE = Gauge(
        'portal_db_pool_health_score',
        'Percentage of connections whose last health check passed'
    )
except ValueError:
    POOL_HEALTH_SCORE = None

try:
    POOL_SUSPICIOUS_ACTIVITY = Gauge(
        'portal_db_pool_suspicious_activity',
        'Findings of the most recent security check'
    )
except ValueError:
    POOL_SUSPICIOUS_ACTIVITY = None

# ============================================================================
# LIFECYCLE METRICS
# ============================================================================
try:
    ACQUIRE_WAIT = Histogram(
        'portal_db_pool_acquire_wait_seconds',
        'Time spent waiting for a connection',
        buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0)
    )
except ValueError:
    ACQUIRE_WAIT = None

try:
    ACQUIRE_TIMEOUTS = Counter(
        'portal_db_pool_acquire_timeouts_total',
        'acquire() calls that timed out in the waiting queue'
    )
except ValueError:
    ACQUIRE_TIMEOUTS = None

try:
    CONNECTIONS_FAILED = Counter(
        'portal_db_pool_connection_failures_total',
        'Connection creation failures'
    )
except ValueError:
    CONNECTIONS_FAILED = None

try:
    CONNECTIONS_REMOVED = Counter(
        'portal_db_pool_connections_removed_total',
        'Connections removed from the pool',
        ['reason']
    )
except ValueError:
    CONNECTIONS_REMOVED = None

# ============================================================================
# QUERY METRICS
# ============================================================================
try:
    QUERY_DURATION = Histogram(
        'portal_db_query_duration_seconds',
        'Pooled query latency',
        ['region'],
        buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)
    )
except ValueError:
    QUERY_DURATION = None

try:
    QUERY_ERRORS = Counter(
        'portal_db_query_errors_total',
        'Pooled query failures',
        ['kind']
    )
except ValueError:
    QUERY_ERRORS = None


def publish_pool_metrics(metrics: PoolMetrics) -> None:
    """Copy a PoolMetrics snapshot into the Prometheus gauges."""
    if POOL_CONNECTIONS:
        POOL_CONNECTIONS.labels(state="total").set(metrics.total_connections)
        POOL_CONNECTIONS.labels(state="active").set(metrics.active_connections)
        POOL_CONNECTIONS.labels(state="idle").set(metrics.idle_connections)
    if POOL_WAITING_REQUESTS:
        POOL_WAITING_REQUESTS.set(metrics.waiting_requests)
    if POOL_HEALTH_SCORE:
        POOL_HEALTH_SCORE.set(metrics.performance.health_score)
    if POOL_SUSPICIOUS_ACTIVITY:
        POOL_SUSPICIOUS_ACTIVITY.set(metrics.security.suspicious_activity)


def record_acquire_wait(seconds: float) -> None:
    if ACQUIRE_WAIT:
        ACQUIRE_WAIT.observe(seconds)


def record_acquire_timeout() -> None:
    if ACQUIRE_TIMEOUTS:
        ACQUIRE_TIMEOUTS.inc()


def record_connection_failure() -> None:
    if CONNECTIONS_FAILED:
        CONNECTIONS_FAILED.inc()


def record_connection_removed(reason: str) -> None:
    if CONNECTIONS_REMOVED:
        CONNECTIONS_REMOVED.labels(reason=reason).inc()


def record_query(seconds: float, region: Optional[str]) -> None:
    if QUERY_DURATION:
        QUERY_DURATION.labels(region=region or "default").observe(seconds)


def record_query_error(kind: str) -> None:
    if QUERY_ERRORS:
        QUERY_ERRORS.labels(kind=kind).inc()


def get_metrics_payload() -> Tuple[bytes, str]:
    """
    Render the default registry in Prometheus exposition format.

    Returns:
        Tuple of (payload, content type)
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
