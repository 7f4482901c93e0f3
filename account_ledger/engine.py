"""
Ledger Engine Module

Owns the balance invariant ``balance >= -limit``. A transaction is applied as
one atomic unit: a conditional UPDATE whose WHERE clause encodes the limit
check, then the insert of the transaction record, then commit. The engine
keeps no in-process state; concurrent writers on the same customer are
serialised by the row lock the UPDATE takes, so several service processes
may share one database.

The statement read is a single LEFT JOIN query so the balance and the listed
transactions always come from the same snapshot.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import sqlite3

from .errors import CustomerNotFoundError, InsufficientLimitError
from .logging_config import get_logger
from .models import Customer, Statement, Transaction, TransactionResult, TransactionType
from .storage import PostgreSQLStore, SQLiteStore, Store, immediate_transaction


# Number of transactions listed in a statement
STATEMENT_SIZE = 10

# Ids are 32-bit serials; anything outside cannot name a customer
MAX_CUSTOMER_ID = 2 ** 31 - 1


class LedgerEngine(ABC):
    """Abstract ledger engine over an injected store"""

    def __init__(self, store: Store):
        self.store = store
        self.logger = get_logger("account_ledger.engine")

    @abstractmethod
    async def apply_transaction(
        self,
        customer_id: int,
        value: int,
        tx_type: TransactionType,
        description: str
    ) -> TransactionResult:
        """
        Move the customer's balance by the signed value and record the
        transaction, atomically.

        Args:
            customer_id: Customer to charge or credit
            value: Positive magnitude of the movement
            tx_type: Credit or debit
            description: Already-validated description

        Returns:
            The customer's limit and post-transaction balance

        Raises:
            CustomerNotFoundError: No such customer
            InsufficientLimitError: The balance would drop below -limit;
                nothing was written
            StoreError: Any database failure; nothing was written
        """
        pass

    @abstractmethod
    async def read_statement(self, customer_id: int) -> Statement:
        """
        Snapshot of the customer's balance and its most recent transactions,
        newest first.

        Raises:
            CustomerNotFoundError: No such customer
            StoreError: Any database failure
        """
        pass

    def _check_customer_id(self, customer_id: int) -> None:
        # Out-of-range ids would fail in the driver rather than miss the row
        if not 0 < customer_id <= MAX_CUSTOMER_ID:
            raise CustomerNotFoundError(customer_id)

    def _build_statement(self, customer_id: int, rows: List[Dict[str, Any]]) -> Statement:
        """Fold LEFT JOIN rows into a Statement"""
        if not rows:
            raise CustomerNotFoundError(customer_id)

        # Every row repeats the customer columns
        customer = Customer(
            id=customer_id,
            limit=rows[0]["customer_limit"],
            balance=rows[0]["customer_balance"]
        )
        transactions = []
        for row in rows:
            # A customer with no transactions still yields one all-NULL row
            if row["transaction_id"] is None:
                continue
            transactions.append(Transaction(
                id=row["transaction_id"],
                value=row["transaction_value"],
                tx_type=TransactionType(row["transaction_type"]),
                description=row["transaction_description"],
                created_at=_as_datetime(row["transaction_created_at"]),
                customer_id=customer_id
            ))

        return Statement.for_customer(customer, transactions)


def _as_datetime(value: Any) -> Optional[datetime]:
    """Normalise driver timestamps to aware UTC datetimes"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class PostgreSQLLedgerEngine(LedgerEngine):
    """Ledger engine on PostgreSQL (asyncpg)"""

    # The CTE always yields exactly one row: the updated (limit, balance),
    # NULL when the guard rejected the update, plus whether the customer
    # exists at all.
    UPDATE_BALANCE_SQL = """
        WITH updated AS (
            UPDATE customers
            SET balance = balance + $1
            WHERE id = $2 AND balance + $1 >= -"limit"
            RETURNING "limit", balance
        )
        SELECT
            updated."limit" AS customer_limit,
            updated.balance AS customer_balance,
            EXISTS (SELECT 1 FROM customers WHERE id = $2) AS customer_exists
        FROM (SELECT 1) AS probe
        LEFT JOIN updated ON TRUE
    """

    INSERT_TRANSACTION_SQL = """
        INSERT INTO transactions (value, "type", description, customer_id)
        VALUES ($1, $2, $3, $4)
    """

    STATEMENT_SQL = """
        SELECT
            c."limit" AS customer_limit,
            c.balance AS customer_balance,
            t.id AS transaction_id,
            t.value AS transaction_value,
            t."type" AS transaction_type,
            t.description AS transaction_description,
            t.created_at AS transaction_created_at
        FROM customers c
        LEFT JOIN transactions t ON t.customer_id = c.id
        WHERE c.id = $1
        ORDER BY t.id DESC
        LIMIT $2
    """

    def __init__(self, store: PostgreSQLStore):
        super().__init__(store)

    async def apply_transaction(
        self,
        customer_id: int,
        value: int,
        tx_type: TransactionType,
        description: str
    ) -> TransactionResult:
        self._check_customer_id(customer_id)
        delta = tx_type.signed(value)

        async with self.store.connection() as conn:
            # READ COMMITTED is enough: the guard and the write are one statement
            async with conn.transaction():
                row = await conn.fetchrow(self.UPDATE_BALANCE_SQL, delta, customer_id)

                if not row["customer_exists"]:
                    raise CustomerNotFoundError(customer_id)
                if row["customer_balance"] is None:
                    raise InsufficientLimitError(customer_id, delta)

                await conn.execute(
                    self.INSERT_TRANSACTION_SQL,
                    value, tx_type.value, description, customer_id
                )

        self.logger.debug(
            "applied %s of %d to customer %d", tx_type.name.lower(), value, customer_id
        )
        return TransactionResult(
            limit=row["customer_limit"],
            balance=row["customer_balance"]
        )

    async def read_statement(self, customer_id: int) -> Statement:
        self._check_customer_id(customer_id)
        async with self.store.connection() as conn:
            rows = await conn.fetch(self.STATEMENT_SQL, customer_id, STATEMENT_SIZE)

        return self._build_statement(customer_id, [dict(row) for row in rows])


class SQLiteLedgerEngine(LedgerEngine):
    """Ledger engine on SQLite"""

    UPDATE_BALANCE_SQL = """
        UPDATE customers
        SET balance = balance + ?
        WHERE id = ? AND balance + ? >= -"limit"
    """

    SELECT_CUSTOMER_SQL = 'SELECT "limit", balance FROM customers WHERE id = ?'

    INSERT_TRANSACTION_SQL = """
        INSERT INTO transactions (value, "type", description, customer_id)
        VALUES (?, ?, ?, ?)
    """

    STATEMENT_SQL = """
        SELECT
            c."limit" AS customer_limit,
            c.balance AS customer_balance,
            t.id AS transaction_id,
            t.value AS transaction_value,
            t."type" AS transaction_type,
            t.description AS transaction_description,
            t.created_at AS transaction_created_at
        FROM customers c
        LEFT JOIN transactions t ON t.customer_id = c.id
        WHERE c.id = ?
        ORDER BY t.id DESC
        LIMIT ?
    """

    def __init__(self, store: SQLiteStore):
        super().__init__(store)

    def _apply(
        self,
        conn: sqlite3.Connection,
        customer_id: int,
        value: int,
        tx_type: TransactionType,
        description: str
    ) -> TransactionResult:
        delta = tx_type.signed(value)

        with immediate_transaction(conn):
            cursor = conn.execute(self.UPDATE_BALANCE_SQL, (delta, customer_id, delta))

            if cursor.rowcount == 0:
                row = conn.execute(self.SELECT_CUSTOMER_SQL, (customer_id,)).fetchone()
                if row is None:
                    raise CustomerNotFoundError(customer_id)
                raise InsufficientLimitError(customer_id, delta)

            row = conn.execute(self.SELECT_CUSTOMER_SQL, (customer_id,)).fetchone()
            conn.execute(
                self.INSERT_TRANSACTION_SQL,
                (value, tx_type.value, description, customer_id)
            )

        return TransactionResult(limit=row["limit"], balance=row["balance"])

    async def apply_transaction(
        self,
        customer_id: int,
        value: int,
        tx_type: TransactionType,
        description: str
    ) -> TransactionResult:
        self._check_customer_id(customer_id)
        result = await self.store.run(self._apply, customer_id, value, tx_type, description)
        self.logger.debug(
            "applied %s of %d to customer %d", tx_type.name.lower(), value, customer_id
        )
        return result

    async def read_statement(self, customer_id: int) -> Statement:
        self._check_customer_id(customer_id)
        rows = await self.store.fetch_all(self.STATEMENT_SQL, (customer_id, STATEMENT_SIZE))
        return self._build_statement(customer_id, rows)


def create_ledger_engine(store: Store) -> LedgerEngine:
    """Pick the engine implementation matching the store"""
    if isinstance(store, PostgreSQLStore):
        return PostgreSQLLedgerEngine(store)
    if isinstance(store, SQLiteStore):
        return SQLiteLedgerEngine(store)
    raise TypeError(f"unsupported store: {type(store).__name__}")
