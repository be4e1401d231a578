"""
PostgreSQL access for the collector and the aggregation planner.

Both only need one primitive: run a parameterized statement and get the rows
back as dicts. psycopg2 is blocking, so each call runs in a worker thread and
borrows a connection from a small threaded pool.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from meterhub.models import QueryResult

log = logging.getLogger(__name__)


class Database(ABC):
    """Parameterized query execution. Errors propagate to the caller unchanged."""

    @abstractmethod
    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult: ...

    async def close(self) -> None:
        return None


class PostgresDatabase(Database):
    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10):
        if not dsn:
            raise ValueError("A database DSN is required (database.dsn or DATABASE_URL)")
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    def _get_pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        """Lazy-initialize the connection pool."""
        if self._pool is None or self._pool.closed:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.minconn,
                maxconn=self.maxconn,
                dsn=self.dsn,
            )
            log.info(f"Opened PostgreSQL pool (max {self.maxconn} connections)")
        return self._pool

    @contextmanager
    def get_connection(self):
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)

    def _execute(self, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute(sql, params)
                    rows = [dict(r) for r in cursor.fetchall()] if cursor.description else []
                    row_count = cursor.rowcount
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return QueryResult(rows=rows, row_count=row_count)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return await asyncio.to_thread(self._execute, sql, list(params) if params is not None else None)

    async def close(self) -> None:
        if self._pool is not None and not self._pool.closed:
            self._pool.closeall()
            log.info("Closed PostgreSQL pool")
