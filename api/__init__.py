"""REST API module for the voucher service.

This module provides HTTP endpoints for:
- Webhooks announcing voucher creation, purchase and redemption
- Listing a buyer's purchased vouchers
- System health monitoring

The process entry point owns the database pool: the lifespan handler builds
the stores and the VoucherManager once and hangs them off app.state, and the
routes reach them through request.app.state.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple, Callable

from asyncpg.pool import Pool
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import load_config
from database import init_db, close_pool
from tokens import TokenGenerator
from vouchers import (
    VoucherManager, VoucherError, ValidationError, NotFoundError,
    ConflictError, StorageError
)
from vouchers.stores import (
    PostgresVoucherStore, PostgresPurchaseStore,
    MemoryVoucherStore, MemoryPurchaseStore
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_RESPONSES = [
    (ValidationError, 400, "validation_error"),
    (NotFoundError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (StorageError, 503, "storage_error"),
]

def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    """Build the error envelope shared by every endpoint."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "code": status_code
        }
    )

async def build_manager(settings: Dict[str, Any]) -> Tuple[VoucherManager, Optional[Pool]]:
    """Create the stores and the voucher manager from settings.

    Returns:
        The manager and, for the postgres backend, the pool the caller must close
    """
    pool = None
    if settings['storage_backend'] == 'memory':
        logger.info("Using in-memory voucher storage")
        voucher_store = MemoryVoucherStore()
        purchase_store = MemoryPurchaseStore(voucher_store)
    else:
        logger.info("Initializing database...")
        pool = await init_db(
            settings['db_url'],
            min_size=settings['pool_min_size'],
            max_size=settings['pool_max_size']
        )
        voucher_store = PostgresVoucherStore(pool)
        purchase_store = PostgresPurchaseStore(pool)

    manager = VoucherManager(
        voucher_store,
        purchase_store,
        token_generator=TokenGenerator(settings['token_bytes']),
        store_timeout=settings['store_timeout']
    )
    return manager, pool

def create_app(
    settings: Optional[Dict[str, Any]] = None,
    manager: Optional[VoucherManager] = None
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Validated settings; loaded at startup when omitted
        manager: Prebuilt manager; when given no stores or pool are created
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        pool = None
        if app.state.manager is None:
            app.state.manager, pool = await build_manager(settings or load_config())
        app.state.pool = pool

        yield

        logger.info("Shutting down API...")
        if pool is not None:
            await close_pool(pool)
        app.state.pool = None

    app = FastAPI(
        title="Voucher API",
        description="Issues, sells and redeems single-use listing vouchers",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.manager = manager
    app.state.pool = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log every request with its status and timing."""
        start_time = time.monotonic()
        response = await call_next(request)
        process_time = time.monotonic() - start_time
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.4f}s"
        )
        return response

    @app.exception_handler(VoucherError)
    async def voucher_error_handler(request: Request, exc: VoucherError):
        """Map lifecycle errors onto HTTP status codes."""
        for error_type, status_code, error in ERROR_RESPONSES:
            if isinstance(exc, error_type):
                return error_response(status_code, error, str(exc))
        logger.error(f"Unhandled voucher error on {request.url.path}: {exc}")
        return error_response(500, "internal_error", str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Report malformed request bodies and parameters as validation errors."""
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        return error_response(400, "validation_error", problems or "Invalid request")

    from .vouchers import webhook_router, vouchers_router
    from .system import router as system_router

    app.include_router(webhook_router)
    app.include_router(vouchers_router)
    app.include_router(system_router)

    return app

app = create_app()
