"""
Custom exceptions for the portal database connection pool.
"""


class PoolError(Exception):
    """Base exception for pool-related errors."""
    pass


class AcquisitionTimeoutError(PoolError):
    """Raised when a waiting caller is not served within acquire_timeout."""
    pass


class PoolShuttingDownError(PoolError):
    """Raised when the pool is used after shutdown has begun."""
    pass


class ConnectionCreationError(PoolError):
    """Raised when a new database client cannot be established."""
    pass


class ConnectivityError(PoolError):
    """Raised when a connection is lost while a query is running."""
    pass
