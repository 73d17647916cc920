"""Invoice endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import Invoice, InvoiceStatus
from ...models.schemas import CreateInvoice, UpdateInvoice
from ...utils.errors import NotFoundError
from ..dependencies import get_ledger, get_organization_id

router = APIRouter()


@router.get("", response_model=List[Invoice])
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.list_invoices(organization_id, status=status)


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    invoice = ledger.get_invoice(organization_id, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


@router.post("", response_model=Invoice, status_code=201)
async def create_invoice(
    body: CreateInvoice,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.create_invoice(Invoice(organization_id=organization_id, **body.model_dump()))


@router.patch("/{invoice_id}", response_model=Invoice)
async def update_invoice(
    invoice_id: str,
    body: UpdateInvoice,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    """Partial update. Send expected_version to guard against concurrent edits (409 on conflict)."""
    changes = body.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    invoice = ledger.update_invoice(organization_id, invoice_id, changes, expected_version)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice
