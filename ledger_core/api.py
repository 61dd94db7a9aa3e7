"""
FastAPI REST API Module

Exposes the ledger's public operations: account create/get/list/close,
deposit/withdraw/transfer, transaction history and the on-demand balance
scan. Amounts travel as decimal strings.
"""

from decimal import Decimal
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Type

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .accounts import Account
from .errors import (
    AccountNotFound, DuplicateAccount, InsufficientFunds, InvalidAmount, LedgerError,
    SameAccountTransfer, StorageError, ValidationError
)
from .system import LedgerSystem
from .transactions import Transaction
from .validation import sanitize_account_id


ERROR_STATUS: Dict[Type[LedgerError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    InvalidAmount: status.HTTP_400_BAD_REQUEST,
    SameAccountTransfer: status.HTTP_400_BAD_REQUEST,
    AccountNotFound: status.HTTP_404_NOT_FOUND,
    DuplicateAccount: status.HTTP_409_CONFLICT,
    InsufficientFunds: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Pydantic models for API requests
class CreateAccountRequest(BaseModel):
    account_id: str = Field(..., description="3 letters followed by 3-6 digits")
    holder_name: str
    initial_balance: Decimal = Field(Decimal("0"), description="Opening balance")
    category: str = Field("SAVINGS", description="SAVINGS, CURRENT, FIXED_DEPOSIT or SALARY")
    email: str
    phone: str


class DepositRequest(BaseModel):
    account_id: str
    amount: Decimal
    description: Optional[str] = None


class WithdrawRequest(BaseModel):
    account_id: str
    amount: Decimal
    description: Optional[str] = None


class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: Decimal
    description: Optional[str] = None


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "account_id": account.account_id,
        "holder_name": account.holder_name,
        "balance": str(account.balance),
        "category": account.category.name,
        "category_display": account.category.display_name,
        "email": account.email,
        "phone": account.phone,
        "status": account.status.value,
        "created_at": account.created_at.isoformat()
    }


def transaction_to_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": transaction.transaction_id,
        "account_id": transaction.account_id,
        "transaction_type": transaction.transaction_type.name,
        "amount": str(transaction.amount),
        "balance_after": str(transaction.balance_after),
        "description": transaction.description,
        "counterparty_account_id": transaction.counterparty_account_id,
        "status": transaction.status.value,
        "created_at": transaction.created_at.isoformat()
    }


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


accounts_router = APIRouter()
transactions_router = APIRouter()
alerts_router = APIRouter()


@accounts_router.post("", status_code=status.HTTP_201_CREATED)
def create_account(request: CreateAccountRequest, system: LedgerSystem = Depends(get_ledger_system)):
    """Create a new account"""
    account = system.account_store.create(
        account_id=request.account_id,
        holder_name=request.holder_name,
        initial_balance=request.initial_balance,
        category=request.category,
        email=request.email,
        phone=request.phone
    )
    return {"account": account_to_dict(account), "message": "Account created successfully"}


@accounts_router.get("")
def list_accounts(system: LedgerSystem = Depends(get_ledger_system)):
    """List active accounts"""
    return {"accounts": [account_to_dict(account) for account in system.account_store.list()]}


@accounts_router.get("/{account_id}")
def get_account(account_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Get account details"""
    return account_to_dict(system.account_store.get(account_id))


@accounts_router.delete("/{account_id}")
def close_account(account_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Close an account (its identifier stays retired)"""
    account = system.account_store.close(account_id)
    return {"account": account_to_dict(account), "message": "Account closed successfully"}


@accounts_router.get("/{account_id}/transactions")
def get_account_transactions(account_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Get transaction history for account, newest first"""
    transactions = system.ledger.get_transaction_history(account_id)
    return {
        "account_id": sanitize_account_id(account_id),
        "count": len(transactions),
        "transactions": [transaction_to_dict(txn) for txn in transactions]
    }


@transactions_router.get("")
def list_transactions(limit: int = 100, system: LedgerSystem = Depends(get_ledger_system)):
    """Most recent transactions across all accounts"""
    transactions = system.ledger.get_all_transactions(limit=limit)
    return {"transactions": [transaction_to_dict(txn) for txn in transactions]}


@transactions_router.post("/deposit")
def deposit(request: DepositRequest, system: LedgerSystem = Depends(get_ledger_system)):
    """Make a deposit"""
    transaction = system.ledger.deposit(request.account_id, request.amount, request.description)
    return {"transaction": transaction_to_dict(transaction), "message": "Deposit processed successfully"}


@transactions_router.post("/withdraw")
def withdraw(request: WithdrawRequest, system: LedgerSystem = Depends(get_ledger_system)):
    """Make a withdrawal"""
    transaction = system.ledger.withdraw(request.account_id, request.amount, request.description)
    return {"transaction": transaction_to_dict(transaction), "message": "Withdrawal processed successfully"}


@transactions_router.post("/transfer")
def transfer(request: TransferRequest, system: LedgerSystem = Depends(get_ledger_system)):
    """Make a transfer between accounts"""
    debit, credit = system.ledger.transfer(
        request.from_account_id, request.to_account_id, request.amount, request.description
    )
    return {
        "debit": transaction_to_dict(debit),
        "credit": transaction_to_dict(credit),
        "message": "Transfer processed successfully"
    }


@alerts_router.post("/scan")
def scan_balances(system: LedgerSystem = Depends(get_ledger_system)):
    """Run the balance alert scan over all active accounts now"""
    result = system.monitor.check_all()
    return {
        "scanned": result.scanned,
        "low_balance": [account.account_id for account in result.low],
        "critical_balance": [account.account_id for account in result.critical]
    }


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)}
    )


def create_app(system: LedgerSystem) -> FastAPI:
    """Create and configure the FastAPI application around a ledger system"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        system.start()
        yield
        system.shutdown()

    app = FastAPI(
        title="Account Ledger API",
        description="Account ledger with minimum-balance enforcement and balance alerts",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.system = system
    app.add_exception_handler(LedgerError, ledger_error_handler)

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(alerts_router, prefix="/alerts", tags=["Alerts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledger_api",
            "accounts": system.account_store.count(),
            "monitoring": system.monitor.is_running
        }

    return app


def run_server(system: LedgerSystem, host: str = "0.0.0.0", port: int = 8090) -> None:
    """Serve the API with uvicorn until interrupted"""
    uvicorn.run(create_app(system), host=host, port=port)
