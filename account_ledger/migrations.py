"""
Database Migration System

Small versioned migration runner for the ledger schema. Each migration carries
its PostgreSQL and SQLite flavour; applied versions are recorded in a
``schema_migrations`` table.
"""

from typing import Dict, List, Sequence, Tuple
from datetime import datetime, timezone
import logging

from .storage import Store


logger = logging.getLogger(__name__)


# Pre-provisioned customer credit limits, all starting at balance 0
SEED_CUSTOMER_LIMITS: Tuple[int, ...] = (100000, 80000, 1000000, 10000000, 500000)


class Migration:
    """Represents a single database migration"""

    def __init__(self, version: int, name: str, postgresql_sql: str, sqlite_sql: str):
        self.version = version
        self.name = name
        self.postgresql_sql = postgresql_sql
        self.sqlite_sql = sqlite_sql

    def sql_for(self, dialect: str) -> str:
        if dialect == "postgresql":
            return self.postgresql_sql
        if dialect == "sqlite":
            return self.sqlite_sql
        raise ValueError(f"unknown dialect: {dialect}")

    def __str__(self) -> str:
        return f"Migration v{self.version:03d}: {self.name}"

    def __repr__(self) -> str:
        return f"Migration(version={self.version}, name='{self.name}')"


CREATE_TABLES = Migration(1, "Create customers and transactions", """
    CREATE TABLE IF NOT EXISTS customers (
        id SERIAL PRIMARY KEY,
        "limit" INTEGER NOT NULL,
        balance INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        CONSTRAINT balance_within_limit CHECK (balance >= -"limit")
    );
    CREATE TABLE IF NOT EXISTS transactions (
        id SERIAL PRIMARY KEY,
        value INTEGER NOT NULL CHECK (value > 0),
        "type" CHAR(1) NOT NULL CHECK ("type" IN ('c', 'd')),
        description VARCHAR(10) NOT NULL,
        customer_id INTEGER NOT NULL REFERENCES customers (id),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_transactions_customer_id
        ON transactions (customer_id, id DESC);
""", """
    CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        "limit" INTEGER NOT NULL,
        balance INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        CONSTRAINT balance_within_limit CHECK (balance >= -"limit")
    );
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        value INTEGER NOT NULL CHECK (value > 0),
        "type" TEXT NOT NULL CHECK ("type" IN ('c', 'd')),
        description TEXT NOT NULL,
        customer_id INTEGER NOT NULL REFERENCES customers (id),
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE INDEX IF NOT EXISTS idx_transactions_customer_id
        ON transactions (customer_id, id DESC);
""")


def _seed_sql(limits: Sequence[int]) -> str:
    values = ", ".join(f"({int(limit)}, 0)" for limit in limits)
    return f'INSERT INTO customers ("limit", balance) VALUES {values};'


SEED_CUSTOMERS = Migration(
    2, "Seed customers",
    _seed_sql(SEED_CUSTOMER_LIMITS),
    _seed_sql(SEED_CUSTOMER_LIMITS)
)


_TRACKING_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        applied_at TEXT NOT NULL
    )
"""

_RECORD_SQL: Dict[str, str] = {
    "postgresql": "INSERT INTO schema_migrations (version, name, applied_at) VALUES ($1, $2, $3)",
    "sqlite": "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
}


class MigrationManager:
    """Manages database migrations"""

    def __init__(self, store: Store, seed_customers: bool = True):
        self.store = store
        self.migrations: List[Migration] = []
        self.add_migration(CREATE_TABLES)
        if seed_customers:
            self.add_migration(SEED_CUSTOMERS)

    def add_migration(self, migration: Migration) -> None:
        """Add a migration to the manager"""
        self.migrations.append(migration)
        self.migrations.sort(key=lambda m: m.version)

    async def _ensure_migration_table(self) -> None:
        await self.store.execute_script(_TRACKING_TABLE_SQL)

    async def get_applied_versions(self) -> List[int]:
        await self._ensure_migration_table()
        rows = await self.store.fetch_all("SELECT version FROM schema_migrations ORDER BY version")
        return [row["version"] for row in rows]

    async def get_current_version(self) -> int:
        """Get the current database version"""
        versions = await self.get_applied_versions()
        return versions[-1] if versions else 0

    async def get_pending(self) -> List[Migration]:
        applied = set(await self.get_applied_versions())
        return [m for m in self.migrations if m.version not in applied]

    async def migrate_up(self) -> List[Migration]:
        """
        Apply all pending migrations in version order.

        Returns:
            The migrations applied by this call
        """
        applied = []
        async with self.store.migration_lock():
            for migration in await self.get_pending():
                logger.info(f"Applying {migration}")
                applied_at = datetime.now(timezone.utc)
                # The schema change and its record commit or roll back together
                await self.store.execute_in_transaction(
                    migration.sql_for(self.store.dialect),
                    _RECORD_SQL[self.store.dialect],
                    (migration.version, migration.name, applied_at.isoformat())
                )
                applied.append(migration)

        if applied:
            logger.info(f"Applied {len(applied)} migrations")
        return applied
