"""
Core connection pool manager for the supplier portal database.

All pool state (connection map, waiting queue, counters) is mutated from
coroutines running on one event loop. Every mutation block runs without an
intervening await, so no lock is needed.
"""

import asyncio
import logging
import secrets
import string
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, TypeVar, Union
)

from portal_db import observability
from portal_db.client import (
    ClientEvent, ClientEventKind, ClientFactory, DatabaseClient, sqlite_client_factory
)
from portal_db.exceptions import (
    AcquisitionTimeoutError,
    ConnectionCreationError,
    ConnectivityError,
    PoolShuttingDownError,
)
from portal_db.pool_config import PoolConfig
from portal_db.pool_metrics import PoolMetrics
from portal_db.regions import WarehouseRegion, parse_region, resolve_region_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

RegionArg = Union[str, WarehouseRegion, None]

CONNECTIVITY_MARKERS = ("connection", "disconnected", "timeout", "econnrefused")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _generate_connection_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"conn_{int(time.time() * 1000)}_{suffix}"


def is_connection_error(error: BaseException) -> bool:
    """
    Check if an error indicates the connection itself is gone.

    Args:
        error: Exception raised by a query

    Returns:
        True if the connection should be replaced
    """
    if isinstance(error, (ConnectivityError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in CONNECTIVITY_MARKERS)


@dataclass
class ConnectionHealth:
    """Result of the most recent health probe."""
    is_healthy: bool = True
    last_check: datetime = field(default_factory=datetime.now)
    response_time_ms: float = 0.0


@dataclass(eq=False)
class PooledConnection:
    """
    A database client leased out by the pool.

    Attributes:
        id: Unique connection id
        client: The underlying DatabaseClient
        is_active: True while leased to a caller
        created_at: Timestamp when connection was created
        last_used: Timestamp of last lease or release
        query_count: Successful queries run through execute_query
        error_count: Failed queries run through execute_query
        region: Warehouse region the client is bound to
        active_queries: Queries currently in flight
        slow_queries: Statements slower than the configured threshold
        health: Snapshot of the last health probe
    """

    id: str
    client: DatabaseClient
    created_at: datetime
    last_used: datetime
    is_active: bool = False
    query_count: int = 0
    error_count: int = 0
    region: Optional[WarehouseRegion] = None
    active_queries: int = 0
    slow_queries: int = 0
    health: ConnectionHealth = field(default_factory=ConnectionHealth)
    retiring: bool = field(default=False, repr=False)
    unsubscribe: Optional[Callable[[], None]] = field(default=None, repr=False)

    def age(self, now: Optional[datetime] = None) -> float:
        """Seconds since the connection was created."""
        return ((now or datetime.now()) - self.created_at).total_seconds()

    def idle_for(self, now: Optional[datetime] = None) -> float:
        """Seconds since the connection was last leased or released."""
        return ((now or datetime.now()) - self.last_used).total_seconds()

    def is_expired(self, max_lifetime: float, now: Optional[datetime] = None) -> bool:
        return self.age(now) > max_lifetime

    def is_idle_expired(self, idle_timeout: float, now: Optional[datetime] = None) -> bool:
        """
        Check if an idle connection has exceeded idle timeout.

        Args:
            idle_timeout: Maximum idle time in seconds

        Returns:
            True if connection is idle and has been idle too long
        """
        return not self.is_active and self.idle_for(now) > idle_timeout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat(),
            "query_count": self.query_count,
            "error_count": self.error_count,
            "region": self.region.value if self.region else None,
            "active_queries": self.active_queries,
            "slow_queries": self.slow_queries,
            "health": {
                "is_healthy": self.health.is_healthy,
                "last_check": self.health.last_check.isoformat(),
                "response_time_ms": round(self.health.response_time_ms, 2),
            },
        }


@dataclass(eq=False)
class _Waiter:
    """A caller blocked in acquire()."""
    future: "asyncio.Future[PooledConnection]"
    region: Optional[WarehouseRegion]
    timer: Optional[asyncio.TimerHandle] = None


class DatabaseConnectionPool:
    """
    Bounded pool of database clients with health and security monitoring.

    Attributes:
        config: PoolConfig instance with pool parameters
        _connections: Map of connection id to PooledConnection
        _waiters: FIFO queue of callers waiting for a connection
        _metrics: PoolMetrics recomputed after every state change
        _pending_creations: Slots reserved by creations still in progress
    """

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        client_factory: ClientFactory = sqlite_client_factory,
    ):
        """
        Initialize the connection pool. No connections are opened until
        initialize() is awaited.

        Args:
            config: Pool configuration (defaults when omitted)
            client_factory: Callable building a DatabaseClient for a URL
        """
        self.config = config or PoolConfig()
        self._client_factory = client_factory
        self._connections: Dict[str, PooledConnection] = {}
        self._waiters: Deque[_Waiter] = deque()
        self._metrics = PoolMetrics(region=self.config.region)
        self._pending_creations = 0
        self._is_shutting_down = False
        self._initialized = False
        self._health_task: Optional[asyncio.Task] = None
        self._security_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def is_shutting_down(self) -> bool:
        return self._is_shutting_down

    @property
    def size(self) -> int:
        return len(self._connections)

    async def initialize(self) -> None:
        """
        Open min_connections connections and start the monitors.
        Individual connection failures are logged, never fatal.
        """
        if self._initialized:
            logger.warning("Pool already initialized")
            return

        logger.info(
            f"Initializing connection pool: min={self.config.min_connections}, "
            f"max={self.config.max_connections}, region={self._region_label(self.config.region)}, "
            f"environment={self.config.environment}"
        )

        self._pending_creations += self.config.min_connections
        results = await asyncio.gather(
            *(self._create_reserved(self.config.region) for _ in range(self.config.min_connections)),
            return_exceptions=True,
        )
        for index, result in enumerate(results, start=1):
            if isinstance(result, Exception):
                logger.warning(f"Failed to create initial connection {index}: {result}")

        self._health_task = asyncio.create_task(self._health_check_loop())
        if self.config.enable_security_monitoring:
            self._security_task = asyncio.create_task(self._security_check_loop())

        self._initialized = True
        logger.info(
            f"Connection pool initialized with {len(self._connections)}/"
            f"{self.config.min_connections} connections"
        )

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    async def acquire(self, region: RegionArg = None) -> PooledConnection:
        """
        Lease a connection, creating or waiting for one if necessary.

        Args:
            region: Optional warehouse region the connection must serve

        Returns:
            A leased PooledConnection; hand it back with release()

        Raises:
            PoolShuttingDownError: If the pool is shutting down
            ConnectionCreationError: If a new connection could not be opened
            AcquisitionTimeoutError: If no connection frees up within acquire_timeout
        """
        if self._is_shutting_down:
            raise PoolShuttingDownError("Connection pool is shutting down")

        target = parse_region(region)
        start = time.perf_counter()

        connection = self._find_idle_connection(target)
        if connection is not None:
            self._lease(connection)
            self._record_acquisition(start)
            return connection

        if self._reserve_slot():
            connection = await self._create_reserved(target, lease=True)
            self._record_acquisition(start)
            return connection

        connection = await self._wait_for_connection(target)
        self._record_acquisition(start)
        return connection

    def release(self, connection: PooledConnection) -> None:
        """
        Return a connection to the pool, handing it straight to the
        longest-waiting caller when the queue is not empty.

        Args:
            connection: The connection to return
        """
        if self._connections.get(connection.id) is not connection:
            if self._is_shutting_down:
                logger.debug(f"Ignoring release of {connection.id} during shutdown")
            else:
                logger.warning(f"Attempted to release unknown connection {connection.id}")
            return

        connection.is_active = False
        connection.last_used = datetime.now()

        if connection.retiring:
            self._retire(connection)
            return

        if not self._hand_to_waiter(connection):
            self._update_metrics()
            logger.debug(f"Released connection {connection.id}")

    @asynccontextmanager
    async def connection(self, region: RegionArg = None):
        """
        Lease a connection for the duration of a block.

        Usage:
            async with pool.connection("US") as conn:
                rows = await conn.client.execute("SELECT ...")

        Yields:
            PooledConnection
        """
        conn = await self.acquire(region)
        try:
            yield conn
        finally:
            self.release(conn)

    async def execute_query(
        self,
        operation: Callable[[DatabaseClient], Awaitable[T]],
        region: RegionArg = None,
    ) -> T:
        """
        Run an operation against a pooled client.

        Connectivity failures remove the connection (and schedule a
        replacement); the original error always propagates.

        Args:
            operation: Coroutine function receiving the DatabaseClient
            region: Optional warehouse region

        Returns:
            Whatever operation returns
        """
        connection = await self.acquire(region)
        start = time.perf_counter()
        removed = False
        connection.active_queries += 1

        try:
            result = await operation(connection.client)
            elapsed = time.perf_counter() - start
            connection.query_count += 1
            self._metrics.record_query(elapsed * 1000)
            if self.config.enable_metrics:
                observability.record_query(elapsed, self._region_label(connection.region))
            return result
        except Exception as e:
            connection.error_count += 1
            self._metrics.record_error()
            lost = is_connection_error(e)
            if self.config.enable_metrics:
                observability.record_query_error("connectivity" if lost else "query")
            logger.error(f"Query failed on connection {connection.id}: {e}")

            if lost:
                removed = True
                await self._remove_connection(connection.id, reason="connectivity")
            raise
        finally:
            connection.active_queries -= 1
            if not removed:
                self.release(connection)

    def _find_idle_connection(self, region: Optional[WarehouseRegion]) -> Optional[PooledConnection]:
        for connection in self._connections.values():
            if not connection.is_active and (region is None or connection.region == region):
                return connection
        return None

    def _lease(self, connection: PooledConnection) -> None:
        connection.is_active = True
        connection.last_used = datetime.now()
        self._update_metrics()

    def _reserve_slot(self) -> bool:
        """Reserve capacity for one new connection if max_connections allows it."""
        if len(self._connections) + self._pending_creations < self.config.max_connections:
            self._pending_creations += 1
            return True
        return False

    async def _wait_for_connection(self, region: Optional[WarehouseRegion]) -> PooledConnection:
        loop = asyncio.get_running_loop()
        waiter = _Waiter(future=loop.create_future(), region=region)
        waiter.timer = loop.call_later(self.config.acquire_timeout, self._expire_waiter, waiter)
        self._waiters.append(waiter)
        self._update_metrics()

        logger.debug(f"Pool saturated, {len(self._waiters)} caller(s) waiting")

        try:
            return await waiter.future
        except asyncio.CancelledError:
            self._discard_waiter(waiter)
            future = waiter.future
            if future.done() and not future.cancelled() and future.exception() is None:
                # Handed a connection just as the caller was cancelled
                self.release(future.result())
            raise

    def _expire_waiter(self, waiter: _Waiter) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            return

        if not waiter.future.done():
            timeout_ms = int(self.config.acquire_timeout * 1000)
            if self.config.enable_metrics:
                observability.record_acquire_timeout()
            logger.warning(
                f"Connection acquisition timeout after {timeout_ms}ms: "
                f"{self._metrics.active_connections} active, {self.config.max_connections} max"
            )
            waiter.future.set_exception(
                AcquisitionTimeoutError(f"Connection acquisition timeout after {timeout_ms}ms")
            )
        self._update_metrics()

    def _discard_waiter(self, waiter: _Waiter) -> None:
        if waiter.timer is not None:
            waiter.timer.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        self._update_metrics()

    def _hand_to_waiter(self, connection: PooledConnection) -> bool:
        """Lease connection to the oldest live waiter. Returns True if one was served."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.timer is not None:
                waiter.timer.cancel()
            if waiter.future.done():
                continue

            self._lease(connection)
            waiter.future.set_result(connection)
            logger.debug(f"Handed connection {connection.id} to waiting caller")
            return True
        return False

    def _record_acquisition(self, start: float) -> None:
        wait_time = time.perf_counter() - start
        self._metrics.record_acquisition(wait_time)
        if self.config.enable_metrics:
            observability.record_acquire_wait(wait_time)

    # ------------------------------------------------------------------
    # Creation / removal
    # ------------------------------------------------------------------

    async def _create_reserved(
        self, region: Optional[WarehouseRegion], lease: bool = False
    ) -> PooledConnection:
        """Create a connection in a slot already counted in _pending_creations."""
        try:
            return await self._create_connection(region, lease=lease)
        finally:
            self._pending_creations -= 1

    async def _create_connection(
        self, region: Optional[WarehouseRegion], lease: bool = False
    ) -> PooledConnection:
        """
        Open, probe and register a new connection.

        Args:
            region: Warehouse region (falls back to the configured region)
            lease: Register the connection already leased to the caller

        Returns:
            The registered PooledConnection

        Raises:
            ConnectionCreationError: If connecting or probing fails
            PoolShuttingDownError: If shutdown began while connecting
        """
        target = region or self.config.region
        connection_id = _generate_connection_id()
        start = time.perf_counter()
        client: Optional[DatabaseClient] = None
        unsubscribe: Optional[Callable[[], None]] = None

        try:
            url = resolve_region_url(self.config.database_url, target)
            client = self._client_factory(url)
            unsubscribe = client.subscribe(self._make_monitor(connection_id, target))
            await asyncio.wait_for(client.connect(), timeout=self.config.acquire_timeout)
            response_time_ms = await client.ping()
        except Exception as e:
            reason = str(e) or type(e).__name__
            self._metrics.record_failed_connection()
            if self.config.enable_metrics:
                observability.record_connection_failure()
            logger.error(
                f"Failed to create database connection {connection_id} "
                f"(region={self._region_label(target)}): {reason}"
            )
            if unsubscribe is not None:
                unsubscribe()
            if client is not None:
                await self._close_quietly(client, connection_id)
            raise ConnectionCreationError(f"Failed to create connection: {reason}") from e

        if self._is_shutting_down:
            unsubscribe()
            await self._close_quietly(client, connection_id)
            raise PoolShuttingDownError("Connection pool is shutting down")

        now = datetime.now()
        connection = PooledConnection(
            id=connection_id,
            client=client,
            created_at=now,
            last_used=now,
            is_active=lease,
            region=target,
            health=ConnectionHealth(True, now, response_time_ms),
            unsubscribe=unsubscribe,
        )
        self._connections[connection_id] = connection

        logger.info(
            f"Database connection created: {connection_id} "
            f"(region={self._region_label(target)}, "
            f"connect_time={(time.perf_counter() - start) * 1000:.1f}ms, "
            f"health_response={response_time_ms:.1f}ms, total={len(self._connections)})"
        )

        if lease or not self._hand_to_waiter(connection):
            self._update_metrics()
        return connection

    async def _remove_connection(self, connection_id: str, reason: str) -> None:
        """
        Drop a connection from the pool and disconnect it, then top the
        pool back up if it fell below min_connections.
        """
        connection = self._take(connection_id)
        if connection is None:
            return
        await self._dispose(connection, reason)

    def _take(self, connection_id: str) -> Optional[PooledConnection]:
        """Pop a connection out of circulation so acquire() can no longer lease it."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        connection.is_active = False
        self._update_metrics()
        return connection

    async def _dispose(self, connection: PooledConnection, reason: str) -> None:
        """Disconnect a connection already taken out of the pool."""
        if self.config.enable_metrics:
            observability.record_connection_removed(reason)

        if connection.unsubscribe is not None:
            connection.unsubscribe()
        await self._close_quietly(connection.client, connection.id)
        logger.info(f"Removed connection {connection.id} ({reason}), total={len(self._connections)}")

        self._ensure_capacity(connection.region)

    def _retire(self, connection: PooledConnection) -> None:
        """Remove a released connection that outlived max_lifetime while leased."""
        self._connections.pop(connection.id, None)
        self._update_metrics()
        if self.config.enable_metrics:
            observability.record_connection_removed("expired")
        self._spawn(self._finish_retirement(connection))

    async def _finish_retirement(self, connection: PooledConnection) -> None:
        if connection.unsubscribe is not None:
            connection.unsubscribe()
        await self._close_quietly(connection.client, connection.id)
        logger.info(f"Retired expired connection {connection.id}")
        self._ensure_capacity(connection.region)

    def _ensure_capacity(self, region: Optional[WarehouseRegion]) -> None:
        """
        Schedule replacements up to min_connections, or up to max_connections
        while callers are queued.
        """
        if self._is_shutting_down:
            return

        target = self.config.max_connections if self._waiters else self.config.min_connections
        missing = target - (len(self._connections) + self._pending_creations)
        for _ in range(missing):
            if not self._reserve_slot():
                break
            self._spawn(self._replace_connection(region))

    async def _replace_connection(self, region: Optional[WarehouseRegion]) -> None:
        """
        Create one replacement with bounded exponential backoff.
        Runs in a reserved slot.
        """
        attempts = max(1, self.config.max_retries)
        try:
            for attempt in range(attempts):
                if self._is_shutting_down:
                    return
                try:
                    connection = await self._create_connection(region)
                    logger.info(f"Created replacement connection {connection.id}")
                    return
                except PoolShuttingDownError:
                    return
                except ConnectionCreationError:
                    if attempt < attempts - 1:
                        wait_time = self.config.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Replacement connection failed (attempt {attempt + 1}/{attempts}), "
                            f"retrying in {wait_time}s"
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        logger.error(f"Failed to create replacement connection after {attempts} attempts")
        finally:
            self._pending_creations -= 1

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _close_quietly(self, client: DatabaseClient, connection_id: str) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.error(f"Error disconnecting connection {connection_id}: {e}")

    def _make_monitor(
        self, connection_id: str, region: Optional[WarehouseRegion]
    ) -> Callable[[ClientEvent], None]:
        """Build the listener the pool subscribes to a client's event stream."""
        slow_threshold_ms = self.config.slow_query_threshold * 1000

        def on_event(event: ClientEvent) -> None:
            connection = self._connections.get(connection_id)

            if event.kind == ClientEventKind.QUERY:
                self._metrics.record_statement(event.duration_ms, region)
                if event.duration_ms > slow_threshold_ms:
                    if connection is not None:
                        connection.slow_queries += 1
                    self._metrics.record_slow_query()
                    logger.warning(
                        f"Slow query detected on {connection_id}: {event.duration_ms:.1f}ms "
                        f"> {slow_threshold_ms:.0f}ms ({(event.statement or '')[:200]})"
                    )
            elif event.kind == ClientEventKind.ERROR:
                if connection is not None:
                    connection.health.is_healthy = False
                logger.error(f"Database client error on {connection_id}: {event.message}")
            else:
                logger.warning(f"Database client warning on {connection_id}: {event.message}")

        return on_event

    # ------------------------------------------------------------------
    # Health monitor
    # ------------------------------------------------------------------

    async def _health_check_loop(self) -> None:
        """Background task running run_health_check every interval."""
        try:
            while not self._is_shutting_down:
                await asyncio.sleep(self.config.health_check_interval)
                if self._is_shutting_down:
                    break
                try:
                    await self.run_health_check()
                except Exception as e:
                    logger.error(f"Error in health check loop: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug("Health check loop cancelled")

    async def run_health_check(self) -> None:
        """
        Prune expired, idle and failing connections in one pass, then
        recompute metrics. Removals may schedule replacements.
        """
        logger.debug("Performing pool health check")
        now = datetime.now()
        # Marked connections leave the map at once; later awaits must not lease them
        to_remove: List[Tuple[PooledConnection, str]] = []

        try:
            for connection in list(self._connections.values()):
                if self._connections.get(connection.id) is not connection:
                    continue

                if connection.is_expired(self.config.max_lifetime, now):
                    if connection.is_active:
                        connection.retiring = True
                        logger.info(f"Connection {connection.id} expired while leased, retiring on release")
                    else:
                        logger.info(f"Connection {connection.id} expired (max lifetime reached)")
                        to_remove.append((self._take(connection.id), "expired"))
                    continue

                if (
                    connection.is_idle_expired(self.config.idle_timeout, now)
                    and len(self._connections) > self.config.min_connections
                ):
                    logger.info(f"Connection {connection.id} idle timeout")
                    to_remove.append((self._take(connection.id), "idle_timeout"))
                    continue

                if (
                    not connection.is_active
                    and not await self._probe(connection)
                    and self._connections.get(connection.id) is connection
                ):
                    to_remove.append((self._take(connection.id), "health_check_failed"))
        finally:
            for connection, reason in to_remove:
                await self._dispose(connection, reason)

        self._update_metrics()
        logger.info(
            f"Health check complete. Active: {self._metrics.active_connections}, "
            f"Idle: {self._metrics.idle_connections}, Removed: {len(to_remove)}"
        )

    async def _probe(self, connection: PooledConnection) -> bool:
        """Ping an idle connection while holding it so no caller can lease it."""
        connection.is_active = True
        healthy = False
        try:
            response_time_ms = await connection.client.ping()
            connection.health = ConnectionHealth(True, datetime.now(), response_time_ms)
            healthy = True
        except Exception as e:
            connection.health.is_healthy = False
            connection.health.last_check = datetime.now()
            logger.warning(f"Connection {connection.id} failed health check: {e}")
        finally:
            connection.is_active = False

        if healthy and self._connections.get(connection.id) is connection:
            self._hand_to_waiter(connection)
        return healthy

    # ------------------------------------------------------------------
    # Security monitor
    # ------------------------------------------------------------------

    async def _security_check_loop(self) -> None:
        """Background task running run_security_check every interval."""
        try:
            while not self._is_shutting_down:
                await asyncio.sleep(self.config.security_check_interval)
                if self._is_shutting_down:
                    break
                try:
                    self.run_security_check()
                except Exception as e:
                    logger.error(f"Error in security check loop: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug("Security check loop cancelled")

    def run_security_check(self) -> int:
        """
        Inspect aggregate failure statistics and long-held leases.
        Advisory only: nothing is revoked.

        Returns:
            Number of findings
        """
        now = datetime.now()
        suspicious_activity = 0
        region = self._region_label(self.config.region)

        failed = self._metrics.security.failed_connections
        if failed > self.config.max_failed_connections:
            suspicious_activity += 1
            logger.warning(f"High number of failed connections detected: {failed} (region={region})")

        error_rate = self._metrics.error_rate
        if error_rate > self.config.max_error_rate:
            suspicious_activity += 1
            logger.warning(f"High error rate detected: {error_rate:.1f}% (region={region})")

        for connection in self._connections.values():
            if connection.is_active and connection.idle_for(now) > self.config.max_lease_duration:
                suspicious_activity += 1
                logger.warning(
                    f"Connection {connection.id} active for extended period: "
                    f"{connection.idle_for(now):.0f}s (region={self._region_label(connection.region)})"
                )

        self._metrics.record_security_check(suspicious_activity)
        if self.config.enable_metrics:
            observability.publish_pool_metrics(self._metrics)

        if suspicious_activity:
            logger.warning(f"Security monitoring detected {suspicious_activity} issue(s) (region={region})")
        return suspicious_activity

    # ------------------------------------------------------------------
    # Shutdown / reporting
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """
        Stop the monitors, reject waiting callers and disconnect every
        connection. Safe to call more than once.
        """
        if self._is_shutting_down:
            logger.debug("Pool shutdown already in progress")
            return

        logger.info("Shutting down connection pool")
        self._is_shutting_down = True

        current = asyncio.current_task()
        tasks = [
            task for task in (self._health_task, self._security_task, *self._background_tasks)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._health_task = None
        self._security_task = None

        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.timer is not None:
                waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(PoolShuttingDownError("Connection pool is shutting down"))

        connections = list(self._connections.values())
        results = await asyncio.gather(
            *(connection.client.close() for connection in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if connection.unsubscribe is not None:
                connection.unsubscribe()
            if isinstance(result, Exception):
                logger.error(f"Error disconnecting {connection.id}: {result}")

        self._connections.clear()
        self._update_metrics()
        logger.info("Connection pool shutdown complete")

    def _update_metrics(self) -> None:
        connections = self._connections.values()
        active = sum(1 for connection in connections if connection.is_active)
        healthy = sum(1 for connection in connections if connection.health.is_healthy)
        total = len(self._connections)

        self._metrics.update_connection_counts(
            total=total,
            active=active,
            idle=total - active,
            waiting=len(self._waiters),
            max_connections=self.config.max_connections,
            healthy=healthy,
        )
        if self.config.enable_metrics:
            observability.publish_pool_metrics(self._metrics)

    def get_metrics(self) -> PoolMetrics:
        """Return a snapshot of the current pool metrics."""
        return self._metrics.snapshot()

    def get_configuration(self) -> PoolConfig:
        return self.config

    def describe_connections(self) -> List[Dict[str, Any]]:
        return [connection.to_dict() for connection in self._connections.values()]

    @staticmethod
    def _region_label(region: Optional[WarehouseRegion]) -> Optional[str]:
        return region.value if region else None
