"""Exception endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import ExceptionRecord, ExceptionStatus
from ...models.schemas import UpdateExceptionStatus
from ...reconciliation import ReconciliationEngine
from ...utils.errors import NotFoundError
from ..dependencies import get_ledger, get_organization_id, get_reconciliation_engine

router = APIRouter()


@router.get("", response_model=List[ExceptionRecord])
async def list_exceptions(
    status: Optional[ExceptionStatus] = None,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.list_exceptions(organization_id, status=status)


@router.post("/identify")
async def identify_exceptions(
    organization_id: str = Depends(get_organization_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """Flag overdue invoices and unmatched payments that are not flagged yet."""
    created = engine.identify_exceptions(organization_id)
    return {
        "message": f"Identified {len(created)} new exceptions",
        "exceptions": [e.model_dump(mode="json") for e in created],
    }


@router.get("/{exception_id}", response_model=ExceptionRecord)
async def get_exception(
    exception_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    exception = ledger.get_exception(organization_id, exception_id)
    if exception is None:
        raise NotFoundError("Exception not found")
    return exception


@router.patch("/{exception_id}/status", response_model=ExceptionRecord)
async def update_exception_status(
    exception_id: str,
    body: UpdateExceptionStatus,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    exception = ledger.update_exception_status(organization_id, exception_id, body.status, body.resolved_by)
    if exception is None:
        raise NotFoundError("Exception not found")
    return exception
