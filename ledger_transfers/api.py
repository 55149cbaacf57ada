"""
FastAPI REST API Module

Exposes account creation, balance lookup and transfers over HTTP. Domain
errors are mapped to status codes by reason code; the transfer service (and
the store behind it) is injected through ``create_app`` rather than held in a
module-level singleton.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from . import __version__
from .config import LedgerConfig, get_config
from .errors import LedgerError, ValidationError
from .logging_config import get_logger, setup_logging
from .schemas import (
    AccountResponse, CreateAccountRequest, ErrorResponse, TransferRequest, TransferResponse
)
from .service import TransferService
from .storage import create_store


logger = get_logger("ledger.api")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_transfer_service(request: Request) -> TransferService:
    return request.app.state.transfer_service


accounts_router = APIRouter()
transactions_router = APIRouter()


@accounts_router.post("", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
def create_account(
    request: CreateAccountRequest,
    service: TransferService = Depends(get_transfer_service)
):
    """Create an account with an opening balance"""
    service.create_account(request.account_id, request.initial_balance)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@accounts_router.get("/{account_id}", response_model=AccountResponse, responses=ERROR_RESPONSES)
def get_account(
    account_id: str,
    service: TransferService = Depends(get_transfer_service)
):
    """Get an account's current balance"""
    account = service.get_account(account_id)
    return account.to_dict(service.scale)


@transactions_router.post("", response_model=TransferResponse, responses=ERROR_RESPONSES)
def transfer(
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service)
):
    """Transfer funds between two accounts"""
    receipt = service.transfer(
        request.source_account_id, request.destination_account_id, request.amount
    )
    return receipt.to_dict(service.scale)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))

    error = ValidationError("; ".join(problems) or "invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(service: TransferService) -> FastAPI:
    """Create and configure the FastAPI application around a transfer service"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        service.close()

    app = FastAPI(
        title="Ledger Transfers API",
        description="Account balances and atomic point-to-point transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.transfer_service = service

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledger_transfers",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return app


def build_app(config: Optional[LedgerConfig] = None) -> FastAPI:
    """Build the application from configuration: store, schema, service"""
    config = config or get_config()
    setup_logging(config.log_level, config.log_format)

    store = create_store(
        config.database_url,
        pool_min=config.database_pool_min,
        pool_max=config.database_pool_max,
        timeout=config.database_timeout,
    )
    store.ensure_schema()
    logger.info("Ledger store ready")

    return create_app(TransferService(store, scale=config.balance_scale))


def run_server(host: str = "0.0.0.0", port: int = 3333):
    """Run the FastAPI server"""
    uvicorn.run(
        "ledger_transfers.api:build_app",
        factory=True,
        host=host,
        port=port,
    )
