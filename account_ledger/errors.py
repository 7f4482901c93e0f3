"""
Ledger Engine Errors

Typed failures raised by the ledger engine and the store layer. None of these
know about HTTP; the API layer maps them to status codes.
"""


class LedgerError(Exception):
    """Base class for all ledger errors"""
    pass


class CustomerNotFoundError(LedgerError):
    """No customer exists with the given id"""
    
    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"customer {customer_id} not found")


class InsufficientLimitError(LedgerError):
    """Applying the delta would take the balance below -limit"""
    
    def __init__(self, customer_id: int, delta: int):
        self.customer_id = customer_id
        self.delta = delta
        super().__init__(
            f"operation results in balance below the limit for customer {customer_id}"
        )


class StoreError(LedgerError):
    """Any lower-level database or connectivity failure.
    
    The driver exception is chained as ``__cause__``.
    """
    pass
