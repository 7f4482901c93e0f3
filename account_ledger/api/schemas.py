"""
Pydantic schemas for API requests and responses

Field names are English; the wire names are the Portuguese aliases the
clients already speak (valor, tipo, descricao, saldo, limite, ...).
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..models import Statement, Transaction, TransactionResult, TransactionType


# Values are stored in 32-bit integer columns
MAX_VALUE = 2 ** 31 - 1


class CreateTransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    value: int = Field(..., alias="valor", gt=0, le=MAX_VALUE, strict=True,
                       description="Positive integer amount")
    tx_type: TransactionType = Field(..., alias="tipo", description="'c' credit or 'd' debit")
    description: str = Field(..., alias="descricao", min_length=1, max_length=10, strict=True)


class CreateTransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    limit: int = Field(..., alias="limite")
    balance: int = Field(..., alias="saldo")
    
    @classmethod
    def from_result(cls, result: TransactionResult) -> 'CreateTransactionResponse':
        return cls(limit=result.limit, balance=result.balance)


class BalanceModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    total: int
    limit: int = Field(..., alias="limite")
    statement_at: datetime = Field(..., alias="data_extrato")


class StatementTransactionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    value: int = Field(..., alias="valor")
    tx_type: str = Field(..., alias="tipo")
    description: str = Field(..., alias="descricao")
    created_at: datetime = Field(..., alias="realizada_em")
    
    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'StatementTransactionModel':
        return cls(
            value=transaction.value,
            tx_type=transaction.tx_type.value,
            description=transaction.description,
            created_at=transaction.created_at
        )


class StatementResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    balance: BalanceModel = Field(..., alias="saldo")
    last_transactions: List[StatementTransactionModel] = Field(
        ..., alias="ultimas_transacoes"
    )
    
    @classmethod
    def from_statement(cls, statement: Statement) -> 'StatementResponse':
        return cls(
            balance=BalanceModel(
                total=statement.balance,
                limit=statement.limit,
                statement_at=statement.statement_at
            ),
            last_transactions=[
                StatementTransactionModel.from_transaction(t) for t in statement.transactions
            ]
        )
