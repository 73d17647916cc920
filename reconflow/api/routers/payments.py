"""Payment endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import Payment, PaymentStatus
from ...models.schemas import CreatePayment, UpdatePayment
from ...utils.errors import NotFoundError
from ..dependencies import get_ledger, get_organization_id

router = APIRouter()


@router.get("", response_model=List[Payment])
async def list_payments(
    status: Optional[PaymentStatus] = None,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.list_payments(organization_id, status=status)


@router.get("/{payment_id}", response_model=Payment)
async def get_payment(
    payment_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    payment = ledger.get_payment(organization_id, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


@router.post("", response_model=Payment, status_code=201)
async def create_payment(
    body: CreatePayment,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    return ledger.create_payment(Payment(organization_id=organization_id, **body.model_dump()))


@router.patch("/{payment_id}", response_model=Payment)
async def update_payment(
    payment_id: str,
    body: UpdatePayment,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    """Partial update. Send expected_version to guard against concurrent edits (409 on conflict)."""
    changes = body.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    payment = ledger.update_payment(organization_id, payment_id, changes, expected_version)
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment
