"""
Database connection pooling for the supplier portal.

This module provides a bounded, region-aware pool of database clients with
health monitoring, security monitoring and graceful shutdown.
"""

from portal_db.exceptions import (
    PoolError,
    AcquisitionTimeoutError,
    PoolShuttingDownError,
    ConnectionCreationError,
    ConnectivityError,
)
from portal_db.regions import WarehouseRegion
from portal_db.pool_config import PoolConfig
from portal_db.pool_metrics import PoolMetrics
from portal_db.client import DatabaseClient, ClientEvent, ClientEventKind, SQLiteClient
from portal_db.pool_manager import DatabaseConnectionPool, PooledConnection
from portal_db.database import (
    get_connection_pool,
    with_pooled_database,
    get_pool_metrics,
    shutdown_pool,
    is_pool_initialized,
)

__all__ = [
    "PoolError",
    "AcquisitionTimeoutError",
    "PoolShuttingDownError",
    "ConnectionCreationError",
    "ConnectivityError",
    "WarehouseRegion",
    "PoolConfig",
    "PoolMetrics",
    "DatabaseClient",
    "ClientEvent",
    "ClientEventKind",
    "SQLiteClient",
    "DatabaseConnectionPool",
    "PooledConnection",
    "get_connection_pool",
    "with_pooled_database",
    "get_pool_metrics",
    "shutdown_pool",
    "is_pool_initialized",
]
