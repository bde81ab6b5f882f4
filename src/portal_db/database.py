"""
Process-wide default connection pool and the functions the rest of the
portal uses to reach the database.

Components that want explicit ownership can construct a
DatabaseConnectionPool themselves and pass it around; this module only
holds the default instance.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from portal_db.client import ClientFactory, DatabaseClient, sqlite_client_factory
from portal_db.pool_config import PoolConfig
from portal_db.pool_manager import DatabaseConnectionPool, RegionArg
from portal_db.pool_metrics import PoolMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global pool instance
_pool: Optional[DatabaseConnectionPool] = None
_init_lock: Optional[asyncio.Lock] = None


async def get_connection_pool(
    config: Optional[PoolConfig] = None,
    client_factory: ClientFactory = sqlite_client_factory,
) -> DatabaseConnectionPool:
    """
    Return the default pool, creating and initializing it on first access.

    Args:
        config: Optional pool configuration. If None, loads from environment.
            Ignored once the pool exists.
        client_factory: Client factory used when the pool is created

    Returns:
        The initialized DatabaseConnectionPool
    """
    global _pool, _init_lock

    if _pool is not None:
        if config is not None:
            logger.warning("Pool already initialized, ignoring new configuration")
        return _pool

    if _init_lock is None:
        _init_lock = asyncio.Lock()

    async with _init_lock:
        if _pool is not None:
            return _pool

        if config is None:
            config = PoolConfig.from_env()

        try:
            config.validate()
        except ValueError as e:
            logger.error(f"Invalid pool configuration: {e}. Using defaults.")
            config = PoolConfig()

        pool = DatabaseConnectionPool(config, client_factory=client_factory)
        await pool.initialize()
        _pool = pool
        logger.info("Connection pool initialized successfully")

    return _pool


async def with_pooled_database(
    operation: Callable[[DatabaseClient], Awaitable[T]],
    region: RegionArg = None,
) -> T:
    """
    Execute a database operation on a pooled client.

    Usage:
        rows = await with_pooled_database(
            lambda client: client.execute("SELECT * FROM orders"), region="EU"
        )
    """
    pool = await get_connection_pool()
    return await pool.execute_query(operation, region)


def get_pool_metrics() -> Optional[PoolMetrics]:
    """
    Get current pool metrics.
    Used by health check endpoints.

    Returns:
        PoolMetrics snapshot if the pool is initialized, None otherwise
    """
    if _pool is not None:
        return _pool.get_metrics()
    return None


def is_pool_initialized() -> bool:
    return _pool is not None


async def shutdown_pool() -> None:
    """
    Shut down and forget the default pool.
    Called during application shutdown and between tests.
    """
    global _pool, _init_lock

    pool, _pool = _pool, None
    _init_lock = None
    if pool is not None:
        await pool.shutdown()
        logger.info("Connection pool closed")
