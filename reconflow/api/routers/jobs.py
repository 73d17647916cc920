"""
Background processing jobs.

Uploads return immediately with a queued job; progress is pushed to
clients over server-sent events at /api/jobs/events.
"""
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse

from ...jobs import EventBus, ProcessingJobTracker
from ...models.extraction import DocumentType
from ...models.processing import ProcessingJob, ProcessingStatus
from ...utils.config import get_settings
from ..dependencies import get_events, get_organization_id, get_tracker, read_upload

router = APIRouter()


def format_sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    document_type: DocumentType = Form(default=DocumentType.UNKNOWN),
    workflow_id: Optional[str] = Form(default=None),
    processor_id: Optional[str] = Form(default=None),
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    data = await read_upload(file)
    job = tracker.submit(
        organization_id, data, file.filename or "document.pdf", file.content_type or "application/pdf",
        document_type=document_type, workflow_id=workflow_id, processor_id=processor_id or None,
    )
    return {"success": True, "job_id": job.id, "job": job.model_dump(mode="json")}


@router.post("/upload/bulk")
async def upload_documents(
    files: List[UploadFile] = File(...),
    document_type: DocumentType = Form(default=DocumentType.UNKNOWN),
    workflow_id: Optional[str] = Form(default=None),
    processor_id: Optional[str] = Form(default=None),
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    uploaded = []
    for file in files:
        data = await read_upload(file)
        uploaded.append((data, file.filename or "document.pdf", file.content_type or "application/pdf"))

    jobs = tracker.submit_many(
        organization_id, uploaded,
        document_type=document_type, workflow_id=workflow_id, processor_id=processor_id or None,
    )
    return {"success": True, "jobs": [job.model_dump(mode="json") for job in jobs]}


@router.get("/events")
async def job_events(
    request: Request,
    organization_id: str = Depends(get_organization_id),
    events: EventBus = Depends(get_events),
):
    """Server-sent event stream of the organization's job events."""
    subscription = events.subscribe(organization_id)
    heartbeat = get_settings().SSE_HEARTBEAT_SECONDS

    async def generate():
        try:
            yield format_sse("connected", json.dumps({"message": "Connected to processing events"}))
            while not await request.is_disconnected():
                event = await subscription.get(timeout=heartbeat)
                if event is None:
                    yield format_sse("ping", "")
                else:
                    yield format_sse(event.type.value, event.model_dump_json())
        finally:
            subscription.close()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/stats/summary")
async def job_stats(
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    return tracker.job_stats(organization_id)


@router.get("", response_model=List[ProcessingJob])
async def list_jobs(
    status: Optional[ProcessingStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    return tracker.list_jobs(organization_id, status=status, limit=limit)


@router.get("/{job_id}", response_model=ProcessingJob)
async def get_job(
    job_id: str,
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    return tracker.get_job(organization_id, job_id)


@router.get("/{job_id}/file-url")
async def get_job_file_url(
    job_id: str,
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    return {"url": await tracker.file_url(organization_id, job_id)}


@router.post("/{job_id}/retry")
async def retry_job(
    job_id: str,
    organization_id: str = Depends(get_organization_id),
    tracker: ProcessingJobTracker = Depends(get_tracker),
):
    job = await tracker.retry(organization_id, job_id)
    return {"success": True, "job_id": job.id}
