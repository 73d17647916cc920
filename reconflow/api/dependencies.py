"""Request-scoped dependencies shared by the routers."""
from typing import Optional

from fastapi import Header, Request, UploadFile

from ..database.ledger_db import LedgerDatabase
from ..jobs import EventBus, ProcessingJobTracker
from ..processors import ProcessorRegistry
from ..reconciliation import ReconciliationEngine
from ..storage import ObjectStorage
from ..utils.config import get_settings
from ..utils.errors import ReconflowError
from ..workflows import WorkflowEngine


def get_organization_id(x_organization_id: Optional[str] = Header(default=None)) -> str:
    """Organization every ledger read and write is scoped to."""
    if not x_organization_id or not x_organization_id.strip():
        raise ReconflowError("No organization selected", status_code=400)
    return x_organization_id.strip()


def get_ledger(request: Request) -> LedgerDatabase:
    return request.app.state.ledger


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_processors(request: Request) -> ProcessorRegistry:
    return request.app.state.processors


def get_workflow_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciliation_engine


def get_tracker(request: Request) -> ProcessingJobTracker:
    return request.app.state.tracker


def get_events(request: Request) -> EventBus:
    return request.app.state.events


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing MAX_FILE_SIZE_MB."""
    data = await file.read()
    limit_mb = get_settings().MAX_FILE_SIZE_MB
    if len(data) > limit_mb * 1024 * 1024:
        raise ReconflowError(f"File {file.filename} exceeds {limit_mb} MB limit", status_code=413)
    if not data:
        raise ReconflowError(f"File {file.filename} is empty", status_code=400)
    return data
