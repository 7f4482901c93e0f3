"""
Shared fixtures: a migrated in-memory SQLite store and a ledger engine on it
"""

import pytest
import pytest_asyncio

from account_ledger.engine import SQLiteLedgerEngine
from account_ledger.migrations import MigrationManager
from account_ledger.storage import SQLiteStore


@pytest_asyncio.fixture
async def store():
    """Empty ledger schema in memory, no seeded customers"""
    store = SQLiteStore(":memory:")
    await store.initialize()
    await MigrationManager(store, seed_customers=False).migrate_up()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def engine(store):
    return SQLiteLedgerEngine(store)


@pytest.fixture
def make_customer(store):
    """Insert a customer and return its id"""
    async def _make(limit: int, balance: int = 0) -> int:
        return await insert_customer(store, limit, balance)
    return _make


async def insert_customer(store, limit: int, balance: int = 0) -> int:
    await store.execute('INSERT INTO customers ("limit", balance) VALUES (?, ?)', (limit, balance))
    rows = await store.fetch_all("SELECT MAX(id) AS id FROM customers")
    return rows[0]["id"]


async def count_transactions(store, customer_id: int) -> int:
    rows = await store.fetch_all(
        "SELECT COUNT(*) AS n FROM transactions WHERE customer_id = ?", (customer_id,)
    )
    return rows[0]["n"]


@pytest.fixture
def transaction_count(store):
    async def _count(customer_id: int) -> int:
        return await count_transactions(store, customer_id)
    return _count
