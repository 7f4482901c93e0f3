"""
Account Ledger Service

A small account-ledger service: customers with a credit limit and a running
balance, signed credit/debit transactions and recent statements. The balance
invariant (balance >= -limit) is enforced by the store with a single
conditional update, so any number of workers may share one database.
"""

__version__ = "1.0.0"
