"""
Ledger Data Model

Customer accounts, immutable transaction records and the statement snapshot
returned by the ledger engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from enum import Enum


class TransactionType(Enum):
    """Direction of a balance movement, valued by its wire code"""
    CREDIT = "c"
    DEBIT = "d"

    def signed(self, value: int) -> int:
        """Return the balance delta for a positive magnitude"""
        return value if self is TransactionType.CREDIT else -value


@dataclass
class Customer:
    """Customer account; only ``balance`` ever changes"""
    id: int
    limit: int
    balance: int
    created_at: Optional[datetime] = None


@dataclass
class Transaction:
    """
    A committed ledger movement.

    ``value`` is always the positive magnitude; the direction lives in
    ``tx_type``.
    """
    value: int
    tx_type: TransactionType
    description: str
    created_at: datetime
    customer_id: int
    id: Optional[int] = None


@dataclass
class TransactionResult:
    """Outcome of a successful apply_transaction"""
    limit: int
    balance: int


@dataclass
class Statement:
    """Point-in-time snapshot of a customer and its most recent transactions"""
    customer_id: int
    limit: int
    balance: int
    statement_at: datetime
    transactions: List[Transaction] = field(default_factory=list)

    @classmethod
    def for_customer(cls, customer: Customer, transactions: List[Transaction]) -> 'Statement':
        """Snapshot of ``customer`` stamped with the current UTC time"""
        return cls(
            customer_id=customer.id,
            limit=customer.limit,
            balance=customer.balance,
            statement_at=datetime.now(timezone.utc),
            transactions=transactions
        )
