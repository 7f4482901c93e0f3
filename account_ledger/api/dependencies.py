"""
Dependencies shared by the API routers
"""

from fastapi import Request

from ..engine import LedgerEngine


def get_ledger_engine(request: Request) -> LedgerEngine:
    """The process-wide ledger engine built at startup"""
    return request.app.state.engine
