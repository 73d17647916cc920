"""Reconciliation endpoints: suggestions, auto-matching and manual matches."""
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import MatchedBy, Reconciliation, ReconciliationStatus, ReconciliationSuggestion
from ...models.schemas import AutoReconcileRequest, CreateReconciliation, UpdateReconciliationStatus
from ...reconciliation import ReconciliationEngine
from ...utils.errors import NotFoundError, ReconflowError
from ..dependencies import get_ledger, get_organization_id, get_reconciliation_engine

router = APIRouter()


@router.get("", response_model=List[Reconciliation])
async def list_reconciliations(
    status: Optional[ReconciliationStatus] = None,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.list_reconciliations(organization_id, status=status)


@router.get("/suggestions", response_model=List[ReconciliationSuggestion])
async def get_suggestions(
    organization_id: str = Depends(get_organization_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    return engine.generate_suggestions(organization_id)


@router.get("/{reconciliation_id}", response_model=Reconciliation)
async def get_reconciliation(
    reconciliation_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    reconciliation = ledger.get_reconciliation(organization_id, reconciliation_id)
    if reconciliation is None:
        raise NotFoundError("Reconciliation not found")
    return reconciliation


@router.post("/auto")
async def auto_reconcile(
    body: Optional[AutoReconcileRequest] = None,
    organization_id: str = Depends(get_organization_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    min_confidence = body.min_confidence if body else None
    reconciled = engine.auto_reconcile(organization_id, min_confidence)
    return {
        "message": f"Auto-reconciled {len(reconciled)} items",
        "reconciliations": [r.model_dump(mode="json") for r in reconciled],
    }


@router.post("", response_model=Reconciliation, status_code=201)
async def create_reconciliation(
    body: CreateReconciliation,
    organization_id: str = Depends(get_organization_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    reconciliation = engine.create_reconciliation(
        organization_id, body.invoice_id, body.payment_id, MatchedBy.MANUAL, body.notes or ""
    )
    if reconciliation is None:
        raise ReconflowError("Failed to create reconciliation. Check invoice and payment IDs.", status_code=400)
    return reconciliation


@router.patch("/{reconciliation_id}/status", response_model=Reconciliation)
async def update_reconciliation_status(
    reconciliation_id: str,
    body: UpdateReconciliationStatus,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    reconciliation = ledger.update_reconciliation_status(organization_id, reconciliation_id, body.status)
    if reconciliation is None:
        raise NotFoundError("Reconciliation not found")
    return reconciliation
