"""
Database client abstraction used by the connection pool.

The pool never talks to a driver directly. It builds clients through a
factory and subscribes to their query/error/warning event stream, so any
driver can be pooled as long as it implements DatabaseClient.
"""

import logging
import sqlite3
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import aiosqlite

from portal_db.exceptions import ConnectivityError

logger = logging.getLogger(__name__)

HEALTH_CHECK_STATEMENT = "SELECT 1 AS health_check"


class ClientEventKind(str, Enum):
    """Kinds of events a client publishes."""
    QUERY = "query"
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ClientEvent:
    """A single event published by a database client."""
    kind: ClientEventKind
    client_id: str
    message: str = ""
    statement: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)


ClientListener = Callable[[ClientEvent], None]


class DatabaseClient(ABC):
    """Interface every pooled client implements."""

    def __init__(self, url: str):
        self.url = url
        self.client_id = uuid.uuid4().hex[:12]
        self._listeners: List[ClientListener] = []

    def subscribe(self, listener: ClientListener) -> Callable[[], None]:
        """
        Register a listener for this client's events.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: ClientEvent) -> None:
        """Deliver an event to every listener. Listener failures are logged."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Client event listener failed: {e}", exc_info=True)

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying connection."""

    @abstractmethod
    async def execute(self, statement: str, params: Sequence[Any] = ()) -> List[Any]:
        """Run a statement and return its rows."""

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying connection."""

    async def ping(self) -> float:
        """
        Run the health check statement.

        Returns:
            Response time in milliseconds
        """
        start = time.perf_counter()
        await self.execute(HEALTH_CHECK_STATEMENT)
        return (time.perf_counter() - start) * 1000.0


ClientFactory = Callable[[str], DatabaseClient]


def _sqlite_path(url: str) -> str:
    """Turn a sqlite URL or plain path into an aiosqlite database argument."""
    for prefix in ("sqlite+aiosqlite:///", "sqlite:///"):
        if url.startswith(prefix):
            return url[len(prefix):]
    return url


def _is_lost_connection(error: Exception) -> bool:
    # aiosqlite raises ValueError once its worker thread is gone
    message = str(error).lower()
    if isinstance(error, ValueError) and "no active connection" in message:
        return True
    return isinstance(error, sqlite3.ProgrammingError) and "closed" in message


class SQLiteClient(DatabaseClient):
    """aiosqlite-backed client that publishes query/error/warning events."""

    def __init__(self, url: str):
        super().__init__(url)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        path = _sqlite_path(self.url)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(path)

    async def execute(self, statement: str, params: Sequence[Any] = ()) -> List[Any]:
        if self._conn is None:
            error = ConnectivityError(f"Client {self.client_id} is disconnected")
            self.emit(ClientEvent(ClientEventKind.ERROR, self.client_id, str(error), statement))
            raise error

        start = time.perf_counter()
        try:
            async with self._conn.execute(statement, params) as cursor:
                rows = await cursor.fetchall()
            await self._conn.commit()
        except Exception as e:
            self.emit(ClientEvent(ClientEventKind.ERROR, self.client_id, str(e), statement))
            if _is_lost_connection(e):
                raise ConnectivityError(f"Connection lost: {e}") from e
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        self.emit(ClientEvent(
            ClientEventKind.QUERY,
            self.client_id,
            statement=statement,
            duration_ms=duration_ms,
        ))
        return list(rows)

    async def close(self) -> None:
        if self._conn is None:
            self.emit(ClientEvent(
                ClientEventKind.WARNING,
                self.client_id,
                "close() called on a client that is not connected",
            ))
            return
        conn, self._conn = self._conn, None
        await conn.close()


def sqlite_client_factory(url: str) -> DatabaseClient:
    """Default client factory."""
    return SQLiteClient(url)
