"""
Shared fixtures for the connection pool tests.

FakeClient stands in for a real database driver so pool behavior can be
driven deterministically (connect failures, broken connections, slow
statements) without a database.
"""

import asyncio
from typing import Any, List, Sequence

import pytest
import pytest_asyncio

from portal_db.client import ClientEvent, ClientEventKind, DatabaseClient
from portal_db.exceptions import ConnectivityError
from portal_db.pool_config import PoolConfig
from portal_db.pool_manager import DatabaseConnectionPool


class FakeClient(DatabaseClient):
    """In-memory DatabaseClient controlled by its factory."""

    def __init__(self, url: str, factory: "FakeClientFactory"):
        super().__init__(url)
        self.factory = factory
        self.connected = False
        self.closed = False
        self.healthy = True
        self.statements: List[str] = []

    async def connect(self) -> None:
        if self.factory.connect_delay:
            await asyncio.sleep(self.factory.connect_delay)
        if self.factory.fail_connect:
            raise ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:5432")
        self.connected = True

    async def execute(self, statement: str, params: Sequence[Any] = ()) -> List[Any]:
        self.statements.append(statement)
        if not self.connected or not self.healthy:
            self.emit(ClientEvent(ClientEventKind.ERROR, self.client_id, "client disconnected", statement))
            raise ConnectivityError("client disconnected")
        self.emit(ClientEvent(
            ClientEventKind.QUERY,
            self.client_id,
            statement=statement,
            duration_ms=self.factory.query_duration_ms,
        ))
        return [(1,)]

    async def close(self) -> None:
        self.closed = True
        self.connected = False
        if self.factory.fail_close:
            raise RuntimeError("socket already closed")


class FakeClientFactory:
    """Callable client factory recording every client it builds."""

    def __init__(self):
        self.clients: List[FakeClient] = []
        self.fail_connect = False
        self.fail_close = False
        self.connect_delay = 0.0
        self.query_duration_ms = 1.0

    def __call__(self, url: str) -> FakeClient:
        client = FakeClient(url, self)
        self.clients.append(client)
        return client


TEST_POOL_DEFAULTS = dict(
    min_connections=2,
    max_connections=3,
    acquire_timeout=0.1,
    health_check_interval=3600.0,
    security_check_interval=3600.0,
    retry_delay=0.001,
    database_url="sqlite:///:memory:",
)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def pool_config():
    return PoolConfig(**TEST_POOL_DEFAULTS)


@pytest_asyncio.fixture
async def make_pool(client_factory):
    """Build initialized pools; every pool is shut down after the test."""
    pools = []

    async def _make(**overrides):
        config = PoolConfig(**{**TEST_POOL_DEFAULTS, **overrides})
        pool = DatabaseConnectionPool(config, client_factory=client_factory)
        await pool.initialize()
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        await pool.shutdown()


async def drain(pool: DatabaseConnectionPool) -> None:
    """Wait for replacement and retirement tasks to finish."""
    while pool._background_tasks:
        await asyncio.gather(*list(pool._background_tasks), return_exceptions=True)


@pytest.fixture
def drain_background():
    return drain
