"""Bulk import of invoices and payments."""
from fastapi import APIRouter, Depends

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import Invoice, Payment
from ...models.schemas import ImportInvoicesRequest, ImportPaymentsRequest
from ..dependencies import get_ledger, get_organization_id

router = APIRouter()


@router.post("/invoices", status_code=201)
async def import_invoices(
    body: ImportInvoicesRequest,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    created = ledger.create_invoices([
        Invoice(organization_id=organization_id, **item.model_dump()) for item in body.invoices
    ])
    return {
        "message": f"Imported {len(created)} invoices",
        "invoices": [i.model_dump(mode="json") for i in created],
    }


@router.post("/payments", status_code=201)
async def import_payments(
    body: ImportPaymentsRequest,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    created = ledger.create_payments([
        Payment(organization_id=organization_id, **item.model_dump()) for item in body.payments
    ])
    return {
        "message": f"Imported {len(created)} payments",
        "payments": [p.model_dump(mode="json") for p in created],
    }
