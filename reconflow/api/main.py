"""
FastAPI application for the reconciliation service.

Provides:
- Ledger endpoints for invoices, payments, reconciliations and exceptions
- Document upload and workflow processing
- Background processing jobs with a server-sent event stream
- Dashboard statistics
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..database.ledger_db import LedgerDatabase, get_database
from ..jobs import EventBus, ProcessingJobTracker
from ..processors import ProcessorRegistry, create_registry
from ..reconciliation import ReconciliationEngine
from ..storage import ObjectStorage, create_storage
from ..utils.config import get_settings
from ..utils.errors import ReconflowError
from ..utils.logging import configure_logging
from ..workflows import WorkflowEngine
from .routers import (
    dashboard,
    exceptions,
    health,
    imports,
    invoices,
    jobs,
    payments,
    processors,
    reconciliations,
    remittances,
    uploads,
    workflows,
)

logger = logging.getLogger(__name__)


def create_app(
    ledger: Optional[LedgerDatabase] = None,
    storage: Optional[ObjectStorage] = None,
    processor_registry: Optional[ProcessorRegistry] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Collaborators not passed in are built from settings at startup.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(settings.LOG_LEVEL, json_format=settings.LOG_FORMAT == "json")

        app.state.ledger = ledger or get_database()
        app.state.storage = storage or create_storage()
        app.state.processors = processor_registry or create_registry()
        app.state.workflow_engine = WorkflowEngine(app.state.ledger, app.state.storage, app.state.processors)
        app.state.reconciliation_engine = ReconciliationEngine(app.state.ledger)
        app.state.events = EventBus()
        app.state.tracker = ProcessingJobTracker(
            app.state.ledger, app.state.workflow_engine, app.state.storage, app.state.events
        )
        logger.info(
            f"{settings.APP_NAME} {settings.APP_VERSION} started with processors: "
            f"{', '.join(p.config.id for p in app.state.processors.get_all())}"
        )

        yield

        await app.state.tracker.shutdown()
        logger.info(f"{settings.APP_NAME} shut down")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Invoice and payment reconciliation with document processing workflows",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ReconflowError)
    async def reconflow_error_handler(request: Request, exc: ReconflowError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"] if part != "body")
            errors.append(f"{location}: {error['msg']}" if location else error["msg"])
        return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])
    app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
    app.include_router(reconciliations.router, prefix="/api/reconciliations", tags=["Reconciliations"])
    app.include_router(exceptions.router, prefix="/api/exceptions", tags=["Exceptions"])
    app.include_router(imports.router, prefix="/api/import", tags=["Import"])
    app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
    app.include_router(workflows.router, prefix="/api/workflows", tags=["Workflows"])
    app.include_router(processors.router, prefix="/api/processors", tags=["Processors"])
    app.include_router(uploads.router, prefix="/api/uploads", tags=["Uploads"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
    app.include_router(remittances.router, prefix="/api/remittances", tags=["Remittances"])

    return app


# Default app instance
app = create_app()
