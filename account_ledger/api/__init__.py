"""
Ledger API Application Factory

Thin HTTP gateway over the ledger engine: validates requests, maps engine
outcomes to status codes and owns the store lifecycle for the process.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import LedgerConfig, get_config
from ..engine import create_ledger_engine
from ..logging_config import get_logger, setup_logging
from ..migrations import MigrationManager
from ..storage import Store, create_store
from .customers import router as customers_router
from .middleware import RequestLogger


logger = get_logger("account_ledger.api")


def create_app(config: Optional[LedgerConfig] = None, store: Optional[Store] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.
    
    Args:
        config: Configuration; the global one when omitted
        store: Pre-built store to use instead of one created from
            ``config.db_conn_str``. An injected store is initialised but
            not closed by the app.
    """
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or get_config()
        setup_logging(cfg.log_level)
        owns_store = store is None
        app_store = create_store(cfg.db_conn_str, cfg.db_max_open_conns) if owns_store else store
        
        await app_store.initialize()
        try:
            if cfg.auto_migrate:
                await MigrationManager(app_store, seed_customers=cfg.seed_customers).migrate_up()
            
            app.state.store = app_store
            app.state.engine = create_ledger_engine(app_store)
            logger.info(f"Ledger API ready ({app_store.dialect})")
            yield
        finally:
            if owns_store:
                await app_store.close()
            logger.info("Ledger API stopped")
    
    app = FastAPI(
        title="Account Ledger API",
        description="Customer balances with limit-guarded credit and debit transactions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    
    app.middleware("http")(RequestLogger())
    
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed input is a bad request"""
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})
    
    app.include_router(customers_router)
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "account_ledger",
            "version": __version__
        }
    
    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8080, workers: int = 1, log_level: str = "info"):
    """Run the FastAPI server"""
    uvicorn.run(
        "account_ledger.api:app",
        host=host,
        port=port,
        workers=workers,
        log_level=log_level.lower()
    )
