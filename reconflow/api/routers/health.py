"""Health check endpoint."""
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ...utils.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service liveness plus the active job count."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
        "storage_backend": settings.STORAGE_BACKEND,
        "active_jobs": request.app.state.tracker.active_count,
    }
