"""
FastAPI Application Entry Point

Hosts the audit service over HTTP: sets up storage in the application
lifespan, maps audit errors to HTTP responses and includes all routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from audit_chain.config import Settings, get_settings
from audit_chain.database import Database, PostgresAuditStorage
from audit_chain.exceptions import (
    ChainHeadConflictError,
    DuplicateEventError,
    StorageError,
)
from audit_chain.routers import chain, events, health
from audit_chain.services.checkpoint import CheckpointSigner
from audit_chain.services.processor import AuditService
from audit_chain.storage import AuditStorage, InMemoryAuditStorage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[AuditStorage] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration (defaults to the cached settings)
        storage: Store to use instead of the configured backend
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: open the configured store and load the checkpoint key
        - Shutdown: close database connections gracefully
        """
        logger.info("Starting Audit Chain Service...")

        database: Optional[Database] = None
        store = storage

        if store is None:
            if settings.storage_backend == "postgres":
                database = Database(settings)
                await database.connect()
                await database.init_schema()
                store = PostgresAuditStorage(database)
            else:
                store = InMemoryAuditStorage()

        app.state.audit_service = AuditService(store, settings)
        app.state.checkpoint_signer = (
            CheckpointSigner.from_file(settings.checkpoint_signing_key_path)
            if settings.checkpoint_signing_key_path else None
        )

        logger.info(f"Audit Chain Service started ({type(store).__name__})")

        yield

        logger.info("Shutting down Audit Chain Service...")
        if database is not None:
            await database.disconnect()
        logger.info("Audit Chain Service stopped")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        # Audit Chain Service API

        Append-only, tamper-evident audit logging:

        - **Hash Chaining**: every event is hashed with its tenant's previous hash
        - **Verification**: recompute a tenant's chain and locate the first broken record
        - **Proofs**: everything needed to recompute one event's hash independently
        - **Checkpoints**: signed chain heads that also reveal truncated logs
        """,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )
    app.state.settings = settings

    # ========================================================================
    # Middleware
    # ========================================================================

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Add request timing header for monitoring."""
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(
                include_url=False,
                include_context=False,
                include_input=False
            )}
        )

    @app.exception_handler(DuplicateEventError)
    async def duplicate_exception_handler(request: Request, exc: DuplicateEventError):
        logger.warning(f"Duplicate append rejected: {exc}")
        return JSONResponse(status_code=409, content={"detail": "Event already exists"})

    @app.exception_handler(ChainHeadConflictError)
    async def conflict_exception_handler(request: Request, exc: ChainHeadConflictError):
        return JSONResponse(
            status_code=409,
            content={"detail": "Concurrent append to this tenant, retry the request"}
        )

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler.

        Returns generic error responses to prevent information leakage.
        Detailed errors are logged internally.
        """
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    # ========================================================================
    # Routers
    # ========================================================================

    app.include_router(events.router)
    app.include_router(chain.router)
    app.include_router(health.router)

    @app.get("/", tags=["root"])
    async def root():
        """Basic service information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "running"
        }

    return app


configure_logging(get_settings())

app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "audit_chain.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers
    )
