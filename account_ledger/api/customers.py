"""
Customer ledger endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from .dependencies import get_ledger_engine
from .schemas import CreateTransactionRequest, CreateTransactionResponse, StatementResponse
from ..engine import LedgerEngine
from ..errors import CustomerNotFoundError, InsufficientLimitError, StoreError
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("account_ledger.api")


def _correlation_id(request: Request):
    return getattr(request.state, "correlation_id", None)


@router.get(
    "/customers/{customer_id}/statement",
    response_model=StatementResponse, tags=["Customers"]
)
# Portuguese path used by existing clients
@router.get(
    "/clientes/{customer_id}/extrato",
    response_model=StatementResponse, include_in_schema=False
)
async def get_statement(
    customer_id: int,
    request: Request,
    engine: LedgerEngine = Depends(get_ledger_engine)
) -> StatementResponse:
    """Current balance and the last 10 transactions, newest first"""
    try:
        statement = await engine.read_statement(customer_id)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError:
        log_action(
            logger, "error", "Statement read failed",
            customer_id=customer_id, action="read_statement",
            correlation_id=_correlation_id(request), exc_info=True
        )
        raise HTTPException(status_code=500, detail="internal server error")
    
    return StatementResponse.from_statement(statement)


@router.post(
    "/customers/{customer_id}/transactions",
    response_model=CreateTransactionResponse, tags=["Customers"]
)
@router.post(
    "/clientes/{customer_id}/transacoes",
    response_model=CreateTransactionResponse, include_in_schema=False
)
async def create_transaction(
    customer_id: int,
    body: CreateTransactionRequest,
    request: Request,
    engine: LedgerEngine = Depends(get_ledger_engine)
) -> CreateTransactionResponse:
    """Post a credit or debit against the customer"""
    try:
        result = await engine.apply_transaction(
            customer_id=customer_id,
            value=body.value,
            tx_type=body.tx_type,
            description=body.description
        )
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientLimitError as e:
        log_action(
            logger, "warning", "Transaction rejected: insufficient limit",
            customer_id=customer_id, action="apply_transaction",
            correlation_id=_correlation_id(request),
            extra={"value": body.value, "type": body.tx_type.value}
        )
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError:
        log_action(
            logger, "error", "Transaction failed",
            customer_id=customer_id, action="apply_transaction",
            correlation_id=_correlation_id(request), exc_info=True
        )
        raise HTTPException(status_code=500, detail="internal server error")
    
    log_action(
        logger, "info", f"Transaction applied: {body.tx_type.name.lower()}",
        customer_id=customer_id, action="apply_transaction",
        resource=f"customer:{customer_id}",
        correlation_id=_correlation_id(request),
        extra={"value": body.value, "type": body.tx_type.value, "balance": result.balance}
    )
    return CreateTransactionResponse.from_result(result)

