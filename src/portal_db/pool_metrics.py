"""
Metrics and monitoring for the portal database connection pool.
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from portal_db.regions import WarehouseRegion

logger = logging.getLogger(__name__)

QUERY_HISTORY_SIZE = 1000


@dataclass
class QueryRecord:
    """A single observed query duration."""
    duration_ms: float
    timestamp: datetime
    region: Optional[WarehouseRegion] = None


@dataclass
class PerformanceMetrics:
    """Performance snapshot nested in PoolMetrics."""
    slow_query_count: int = 0
    average_acquire_time_ms: float = 0.0
    connection_utilization: float = 0.0
    health_score: float = 100.0


@dataclass
class SecurityMetrics:
    """Security snapshot nested in PoolMetrics."""
    failed_connections: int = 0
    suspicious_activity: int = 0
    last_security_check: datetime = field(default_factory=datetime.now)


@dataclass
class PoolMetrics:
    """
    Tracks connection pool metrics.

    Connection counts are recomputed by the pool after every state change;
    query counters and the rolling average are updated as queries complete.
    """

    total_connections: int = 0
    active_connections: int = 0
    idle_connections: int = 0
    waiting_requests: int = 0
    average_query_time_ms: float = 0.0
    total_queries: int = 0
    total_errors: int = 0
    error_rate: float = 0.0
    last_update: datetime = field(default_factory=datetime.now)
    region: Optional[WarehouseRegion] = None
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    security: SecurityMetrics = field(default_factory=SecurityMetrics)
    query_history: Deque[QueryRecord] = field(
        default_factory=lambda: deque(maxlen=QUERY_HISTORY_SIZE), repr=False
    )
    acquisition_times: List[float] = field(default_factory=list, repr=False)

    def update_connection_counts(
        self,
        total: int,
        active: int,
        idle: int,
        waiting: int,
        max_connections: int,
        healthy: int,
    ) -> None:
        """Store freshly counted connection state."""
        self.total_connections = total
        self.active_connections = active
        self.idle_connections = idle
        self.waiting_requests = waiting
        self.performance.connection_utilization = (
            round(active / max_connections * 100, 2) if max_connections else 0.0
        )
        self.performance.health_score = round(healthy / total * 100, 2) if total else 100.0
        self.last_update = datetime.now()

    def record_query(self, duration_ms: float) -> None:
        """
        Record a successful query and update the rolling average.

        Args:
            duration_ms: Query time in milliseconds
        """
        self.total_queries += 1
        self.average_query_time_ms = (
            self.average_query_time_ms * (self.total_queries - 1) + duration_ms
        ) / self.total_queries
        self._refresh_error_rate()

    def record_error(self) -> None:
        """Record a failed query."""
        self.total_errors += 1
        self._refresh_error_rate()

    def _refresh_error_rate(self) -> None:
        attempts = self.total_queries + self.total_errors
        self.error_rate = (self.total_errors / attempts) * 100 if attempts else 0.0
        self.last_update = datetime.now()

    def record_statement(self, duration_ms: float, region: Optional[WarehouseRegion]) -> None:
        """Append a client-reported statement duration to the history."""
        self.query_history.append(QueryRecord(duration_ms, datetime.now(), region))

    def record_slow_query(self) -> None:
        self.performance.slow_query_count += 1

    def record_failed_connection(self) -> None:
        self.security.failed_connections += 1

    def record_acquisition(self, wait_time: float) -> None:
        """
        Record a successful connection acquisition.

        Args:
            wait_time: Time in seconds waited for connection
        """
        self.acquisition_times.append(wait_time)

        # Keep only last 1000 acquisition times to prevent memory growth
        if len(self.acquisition_times) > 1000:
            self.acquisition_times = self.acquisition_times[-1000:]

        self.performance.average_acquire_time_ms = (
            sum(self.acquisition_times) / len(self.acquisition_times) * 1000
        )

    def record_security_check(self, suspicious_activity: int) -> None:
        self.security.suspicious_activity = suspicious_activity
        self.security.last_security_check = datetime.now()

    def average_statement_time_ms(self, region: Optional[WarehouseRegion] = None) -> float:
        """Average of the recorded statement durations, optionally per region."""
        durations = [
            record.duration_ms for record in self.query_history
            if region is None or record.region == region
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    def snapshot(self) -> "PoolMetrics":
        """Return an independent copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "idle_connections": self.idle_connections,
            "waiting_requests": self.waiting_requests,
            "average_query_time_ms": round(self.average_query_time_ms, 2),
            "total_queries": self.total_queries,
            "total_errors": self.total_errors,
            "error_rate": round(self.error_rate, 2),
            "last_update": self.last_update.isoformat(),
            "region": self.region.value if self.region else None,
            "performance": {
                "slow_query_count": self.performance.slow_query_count,
                "average_acquire_time_ms": round(self.performance.average_acquire_time_ms, 2),
                "connection_utilization": self.performance.connection_utilization,
                "health_score": self.performance.health_score,
            },
            "security": {
                "failed_connections": self.security.failed_connections,
                "suspicious_activity": self.security.suspicious_activity,
                "last_security_check": self.security.last_security_check.isoformat(),
            },
        }
