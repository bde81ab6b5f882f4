"""Tests for the advisory security monitor."""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest


@pytest.mark.asyncio
async def test_quiet_pool_has_no_findings(make_pool):
    pool = await make_pool()
    before = pool.get_metrics().security.last_security_check

    findings = pool.run_security_check()

    metrics = pool.get_metrics()
    assert findings == 0
    assert metrics.security.suspicious_activity == 0
    assert metrics.security.last_security_check >= before


@pytest.mark.asyncio
async def test_failed_connections_flagged(make_pool, caplog):
    pool = await make_pool(max_failed_connections=10)
    pool._metrics.security.failed_connections = 11

    with caplog.at_level(logging.WARNING, logger="portal_db.pool_manager"):
        findings = pool.run_security_check()

    assert findings == 1
    assert "failed connections" in caplog.text


@pytest.mark.asyncio
async def test_failed_connections_at_threshold_not_flagged(make_pool):
    pool = await make_pool(max_failed_connections=10)
    pool._metrics.security.failed_connections = 10

    assert pool.run_security_check() == 0


@pytest.mark.asyncio
async def test_error_rate_flagged(make_pool):
    pool = await make_pool()

    async def ok(client):
        return await client.execute("SELECT 1")

    async def bad(client):
        raise ValueError("constraint violation")

    for _ in range(8):
        await pool.execute_query(ok)
    for _ in range(2):
        with pytest.raises(ValueError):
            await pool.execute_query(bad)

    assert pool.get_metrics().error_rate == pytest.approx(20.0)
    assert pool.run_security_check() == 1


@pytest.mark.asyncio
async def test_long_lease_flagged_but_not_revoked(make_pool):
    pool = await make_pool()
    conn = await pool.acquire()
    conn.last_used = datetime.now() - timedelta(minutes=11)

    findings = pool.run_security_check()

    assert findings == 1
    assert conn.is_active
    assert conn.id in pool._connections
    assert pool.get_metrics().security.suspicious_activity == 1


@pytest.mark.asyncio
async def test_each_long_lease_counts(make_pool):
    pool = await make_pool()
    for conn in [await pool.acquire(), await pool.acquire()]:
        conn.last_used = datetime.now() - timedelta(minutes=30)
    pool._metrics.security.failed_connections = 50

    assert pool.run_security_check() == 3


@pytest.mark.asyncio
async def test_security_loop_runs_periodically(make_pool):
    pool = await make_pool(security_check_interval=0.05)
    pool._metrics.security.failed_connections = 11

    await asyncio.sleep(0.15)

    assert pool.get_metrics().security.suspicious_activity == 1


@pytest.mark.asyncio
async def test_security_monitoring_can_be_disabled(make_pool):
    pool = await make_pool(enable_security_monitoring=False)

    assert pool._security_task is None
    assert pool._health_task is not None
