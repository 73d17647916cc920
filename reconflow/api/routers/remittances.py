"""Remittance advices saved by the remittance workflow."""
import asyncio

from fastapi import APIRouter, Depends, Query

from ...database.ledger_db import LedgerDatabase
from ...models.ledger import Remittance
from ...storage import ObjectStorage
from ...utils.config import get_settings
from ...utils.errors import NotFoundError
from ..dependencies import get_ledger, get_organization_id, get_storage

router = APIRouter()


@router.get("")
async def list_remittances(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    remittances = ledger.list_remittances(organization_id, limit=limit, offset=offset)
    return {
        "remittances": [r.model_dump(mode="json") for r in remittances],
        "total": ledger.count_remittances(organization_id),
        "limit": limit,
        "offset": offset,
    }


@router.get("/{remittance_id}", response_model=Remittance)
async def get_remittance(
    remittance_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
):
    remittance = ledger.get_remittance(organization_id, remittance_id)
    if remittance is None:
        raise NotFoundError("Remittance not found")
    return remittance


@router.get("/{remittance_id}/file-url")
async def get_remittance_file_url(
    remittance_id: str,
    organization_id: str = Depends(get_organization_id),
    ledger: LedgerDatabase = Depends(get_ledger),
    storage: ObjectStorage = Depends(get_storage),
):
    remittance = ledger.get_remittance(organization_id, remittance_id)
    if remittance is None:
        raise NotFoundError("Remittance not found")
    if not remittance.source_file_key:
        raise NotFoundError("No file available")
    url = await asyncio.to_thread(storage.presign, remittance.source_file_key, get_settings().PRESIGN_EXPIRY_SECONDS)
    return {"url": url}
