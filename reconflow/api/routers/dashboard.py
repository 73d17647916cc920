"""Dashboard statistics."""
from fastapi import APIRouter, Depends

from ...models.ledger import DashboardStats
from ...reconciliation import ReconciliationEngine
from ..dependencies import get_organization_id, get_reconciliation_engine

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    organization_id: str = Depends(get_organization_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    return engine.get_dashboard_stats(organization_id)
