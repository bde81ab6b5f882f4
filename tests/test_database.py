"""Tests for the default pool and the public database functions."""

from dataclasses import replace

import pytest
import pytest_asyncio

from portal_db import database
from portal_db.database import (
    get_connection_pool,
    get_pool_metrics,
    is_pool_initialized,
    shutdown_pool,
    with_pooled_database,
)
from portal_db.pool_config import PoolConfig


@pytest_asyncio.fixture(autouse=True)
async def reset_default_pool():
    await shutdown_pool()
    yield
    await shutdown_pool()


@pytest.mark.asyncio
async def test_metrics_unavailable_before_init():
    assert get_pool_metrics() is None
    assert not is_pool_initialized()


@pytest.mark.asyncio
async def test_pool_created_once(client_factory, pool_config):
    first = await get_connection_pool(pool_config, client_factory=client_factory)
    second = await get_connection_pool()

    assert first is second
    assert is_pool_initialized()
    assert len(client_factory.clients) == 2


@pytest.mark.asyncio
async def test_with_pooled_database(client_factory, pool_config):
    await get_connection_pool(pool_config, client_factory=client_factory)

    rows = await with_pooled_database(lambda client: client.execute("SELECT 1"), region=None)

    assert rows == [(1,)]
    metrics = get_pool_metrics()
    assert metrics.total_queries == 1
    assert metrics.active_connections == 0


@pytest.mark.asyncio
async def test_invalid_config_falls_back_to_defaults(client_factory, pool_config, caplog):
    bad = replace(pool_config, min_connections=9, max_connections=1)

    pool = await get_connection_pool(bad, client_factory=client_factory)

    assert pool.config == PoolConfig()
    assert "Invalid pool configuration" in caplog.text


@pytest.mark.asyncio
async def test_config_loaded_from_environment(client_factory, monkeypatch):
    monkeypatch.setenv("DB_MIN_CONNECTIONS", "1")
    monkeypatch.setenv("DB_MAX_CONNECTIONS", "4")

    pool = await get_connection_pool(client_factory=client_factory)

    assert pool.config.min_connections == 1
    assert pool.config.max_connections == 4
    assert pool.size == 1


@pytest.mark.asyncio
async def test_shutdown_pool_resets(client_factory, pool_config):
    pool = await get_connection_pool(pool_config, client_factory=client_factory)

    await shutdown_pool()
    await shutdown_pool()

    assert pool.is_shutting_down
    assert database._pool is None
    assert get_pool_metrics() is None
    assert all(client.closed for client in client_factory.clients)
