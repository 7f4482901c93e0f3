"""
Storage Backend Module

Store handles for the ledger: PostgreSQL through an asyncpg connection pool
(production) and SQLite through the standard library driver (development and
tests). A store is created and closed by the process; the ledger engine only
borrows it. Every driver failure leaves this module as a StoreError.
"""

from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Union
import asyncio
import logging
import sqlite3
import threading

import asyncpg

from .errors import StoreError


logger = logging.getLogger(__name__)

# Advisory lock key guarding schema migrations
MIGRATION_LOCK_KEY = 0x6c656467

# Errors raised by asyncpg for query, protocol and connectivity failures
POSTGRES_DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class PostgreSQLStore:
    """PostgreSQL store backed by a bounded asyncpg pool"""

    dialect = "postgresql"

    def __init__(self, connection_string: str, pool_size: int = 5):
        self.connection_string = connection_string
        self.pool_size = pool_size
        self.pool = None

    async def initialize(self) -> None:
        """Create connection pool. Call once on startup."""
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=60
            )
        except POSTGRES_DRIVER_ERRORS as e:
            raise StoreError(f"could not create connection pool: {e}") from e
        logger.info("PostgreSQL pool ready (max_size=%d)", self.pool_size)

    async def close(self) -> None:
        """Close pool. Call once on shutdown."""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def connection(self):
        """
        Borrow a pooled connection.

        Waits while the pool is saturated. Driver errors raised while the
        connection is held are re-raised as StoreError; anything else passes
        through untouched.
        """
        if self.pool is None:
            raise StoreError("pool not initialized, call initialize() first")
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except POSTGRES_DRIVER_ERRORS as e:
            raise StoreError(str(e) or e.__class__.__name__) from e

    @asynccontextmanager
    async def migration_lock(self):
        """
        Hold a session-level advisory lock on a connection outside the pool,
        so workers starting together apply migrations one at a time.
        """
        try:
            conn = await asyncpg.connect(self.connection_string)
        except POSTGRES_DRIVER_ERRORS as e:
            raise StoreError(f"could not take migration lock: {e}") from e
        try:
            await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
            yield
        finally:
            await conn.close()

    async def execute_script(self, sql: str) -> None:
        async with self.connection() as conn:
            await conn.execute(sql)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> str:
        async with self.connection() as conn:
            return await conn.execute(sql, *params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            rows = await conn.fetch(sql, *params)
            return [dict(row) for row in rows]

    async def execute_in_transaction(self, script: str, sql: str, params: Sequence[Any] = ()) -> None:
        """Run a script and then one parameterised statement, committed together"""
        async with self.connection() as conn:
            async with conn.transaction():
                await conn.execute(script)
                await conn.execute(sql, *params)


@contextmanager
def immediate_transaction(conn: sqlite3.Connection):
    """
    Run a block inside BEGIN IMMEDIATE ... COMMIT.

    IMMEDIATE takes the write lock up front, so two writers on the same file
    queue on the busy timeout instead of failing on lock upgrade.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def split_script(script: str) -> List[str]:
    """
    Split a SQL script into single statements.

    ``executescript`` commits any open transaction first, so scripts that must
    join a transaction are run statement by statement instead.
    """
    statements = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            if buffer.strip():
                statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


class SQLiteStore:
    """SQLite store: one connection, serialised by a lock, run off-loop"""

    dialect = "sqlite"

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._connection = None
        self._lock = threading.Lock()

    async def initialize(self) -> None:
        """Open the connection"""
        if self._connection is None:
            await asyncio.to_thread(self._connect)

    def _connect(self) -> None:
        try:
            # Autocommit mode; transactions are opened explicitly
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")

            # WAL lets readers proceed while a writer holds the lock
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as e:
            raise StoreError(f"could not open sqlite database {self.db_path}: {e}") from e
        self._connection = conn

    async def close(self) -> None:
        if self._connection is not None:
            conn, self._connection = self._connection, None
            await asyncio.to_thread(conn.close)

    async def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Call ``fn(connection, *args)`` in a worker thread while holding the
        connection lock.
        """
        if self._connection is None:
            raise StoreError("store not initialized, call initialize() first")
        return await asyncio.to_thread(self._run_locked, fn, *args)

    def _run_locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            conn = self._connection
            try:
                return fn(conn, *args)
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreError(str(e)) from e

    @asynccontextmanager
    async def migration_lock(self):
        """One connection per store; migrations are already serialised"""
        yield

    async def execute_script(self, sql: str) -> None:
        await self.run(lambda conn: conn.executescript(sql))

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        return await self.run(lambda conn: conn.execute(sql, tuple(params)).rowcount)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        def _fetch(conn):
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]
        return await self.run(_fetch)

    async def execute_in_transaction(self, script: str, sql: str, params: Sequence[Any] = ()) -> None:
        """Run a script and then one parameterised statement, committed together"""
        def _execute(conn):
            with immediate_transaction(conn):
                for statement in split_script(script):
                    conn.execute(statement)
                conn.execute(sql, tuple(params))
        await self.run(_execute)


Store = Union[PostgreSQLStore, SQLiteStore]


def create_store(connection_string: str, pool_size: int = 5) -> Store:
    """
    Factory function to create a store from a connection URL.

    ``postgres://`` and ``postgresql://`` give a pooled PostgreSQL store,
    ``sqlite:///<path>`` (``sqlite:///:memory:`` included) a SQLite store.
    """
    if connection_string.startswith(("postgres://", "postgresql://")):
        return PostgreSQLStore(connection_string, pool_size)

    if connection_string.startswith("sqlite:///"):
        return SQLiteStore(connection_string[len("sqlite:///"):] or ":memory:")

    scheme = connection_string.split(":", 1)[0]
    raise ValueError(f"unsupported database URL scheme: {scheme!r}")
