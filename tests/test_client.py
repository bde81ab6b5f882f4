"""Tests for the aiosqlite client, its event stream and region routing."""

import pytest

from portal_db.client import ClientEventKind, SQLiteClient
from portal_db.exceptions import ConnectivityError
from portal_db.pool_config import PoolConfig
from portal_db.pool_manager import DatabaseConnectionPool
from portal_db.regions import WarehouseRegion, parse_region, resolve_region_url


class TestRegions:
    def test_parse_region(self):
        assert parse_region("us") == WarehouseRegion.US
        assert parse_region(" Jp ") == WarehouseRegion.JP
        assert parse_region(WarehouseRegion.EU) == WarehouseRegion.EU
        assert parse_region(None) is None
        assert parse_region("") is None

    def test_parse_unknown_region(self):
        with pytest.raises(ValueError, match="Unknown warehouse region"):
            parse_region("APAC")

    def test_resolve_without_region(self):
        assert resolve_region_url("sqlite:///base.db", None) == "sqlite:///base.db"

    def test_resolve_uses_fallback_variable(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL_AU", raising=False)
        monkeypatch.setenv("DATABASE_URL_AUSTRALIA", "sqlite:///au.db")

        assert resolve_region_url("sqlite:///base.db", WarehouseRegion.AU) == "sqlite:///au.db"

    def test_resolve_prefers_primary_variable(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL_US", "sqlite:///us.db")
        monkeypatch.setenv("DATABASE_URL_US_WEST", "sqlite:///us-west.db")

        assert resolve_region_url("sqlite:///base.db", WarehouseRegion.US) == "sqlite:///us.db"


class TestSQLiteClient:
    @pytest.mark.asyncio
    async def test_execute_emits_query_event(self):
        client = SQLiteClient("sqlite:///:memory:")
        events = []
        client.subscribe(events.append)
        await client.connect()

        try:
            await client.execute("CREATE TABLE batteries (sku TEXT, stock INTEGER)")
            await client.execute("INSERT INTO batteries VALUES (?, ?)", ("FM-9AH", 40))
            rows = await client.execute("SELECT sku, stock FROM batteries")
        finally:
            await client.close()

        assert rows == [("FM-9AH", 40)]
        assert [e.kind for e in events] == [ClientEventKind.QUERY] * 3
        assert events[-1].statement == "SELECT sku, stock FROM batteries"
        assert events[-1].duration_ms >= 0

    @pytest.mark.asyncio
    async def test_sql_error_emits_error_event(self):
        client = SQLiteClient(":memory:")
        events = []
        client.subscribe(events.append)
        await client.connect()

        try:
            with pytest.raises(Exception) as exc_info:
                await client.execute("SELECT * FROM missing_table")
        finally:
            await client.close()

        assert not isinstance(exc_info.value, ConnectivityError)
        assert events[-1].kind == ClientEventKind.ERROR
        assert "missing_table" in events[-1].message

    @pytest.mark.asyncio
    async def test_execute_after_close_is_connectivity_error(self):
        client = SQLiteClient(":memory:")
        await client.connect()
        await client.close()

        with pytest.raises(ConnectivityError):
            await client.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_double_close_emits_warning(self):
        client = SQLiteClient(":memory:")
        events = []
        client.subscribe(events.append)
        await client.connect()
        await client.close()

        await client.close()

        assert events[-1].kind == ClientEventKind.WARNING

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        client = SQLiteClient(":memory:")
        events = []
        unsubscribe = client.subscribe(events.append)
        await client.connect()
        unsubscribe()

        try:
            await client.ping()
        finally:
            await client.close()

        assert events == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_client(self):
        client = SQLiteClient(":memory:")

        def broken(event):
            raise RuntimeError("listener bug")

        client.subscribe(broken)
        await client.connect()
        try:
            assert await client.ping() >= 0
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_pool_over_sqlite_file(tmp_path):
    db_path = tmp_path / "portal" / "orders.db"
    config = PoolConfig(
        min_connections=1,
        max_connections=2,
        acquire_timeout=1.0,
        health_check_interval=3600.0,
        security_check_interval=3600.0,
        database_url=f"sqlite:///{db_path}",
    )
    pool = DatabaseConnectionPool(config)
    await pool.initialize()

    try:
        await pool.execute_query(
            lambda client: client.execute("CREATE TABLE orders (id INTEGER, status TEXT)")
        )
        await pool.execute_query(
            lambda client: client.execute("INSERT INTO orders VALUES (1, 'shipped')")
        )
        rows = await pool.execute_query(
            lambda client: client.execute("SELECT status FROM orders WHERE id = ?", (1,))
        )
    finally:
        await pool.shutdown()

    assert rows == [("shipped",)]
    assert db_path.exists()
