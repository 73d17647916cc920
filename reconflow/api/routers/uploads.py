"""
Document upload endpoints.

Files uploaded here are processed synchronously: the response carries the
finished workflow execution. Use /api/jobs for background processing.
"""
import asyncio
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ...models.extraction import DocumentType
from ...models.schemas import PresignUploadRequest, ProcessFileRequest
from ...models.workflow import WorkflowInput
from ...jobs import workflow_for
from ...storage import ObjectStorage
from ...utils.config import get_settings
from ...utils.errors import NotFoundError
from ...workflows import WorkflowEngine
from ..dependencies import get_organization_id, get_storage, get_workflow_engine, read_upload

router = APIRouter()

STORED_PREFIXES = ("uploads", "documents", "remittances")


def _check_owned_key(file_key: str, organization_id: str) -> None:
    """Keys belonging to another organization are reported as missing."""
    owned = any(file_key.startswith(f"{prefix}/{organization_id}/") for prefix in STORED_PREFIXES)
    if not owned or ".." in file_key.split("/"):
        raise NotFoundError(f"File not found: {file_key}")


async def _run_workflow(
    engine: WorkflowEngine,
    organization_id: str,
    file_bytes: bytes,
    file_name: str,
    mime_type: str,
    document_type: Optional[DocumentType],
    workflow_id: Optional[str],
    processor_id: Optional[str],
    file_key: Optional[str] = None,
):
    metadata = {"organization_id": organization_id}
    if document_type:
        metadata["document_type"] = document_type.value

    execution = await engine.execute(
        workflow_id or workflow_for(document_type or DocumentType.UNKNOWN),
        WorkflowInput(
            file_bytes=file_bytes,
            file_key=file_key,
            file_name=file_name,
            mime_type=mime_type,
            metadata=metadata,
        ),
        processor_id=processor_id or None,
    )
    return {"success": execution.status.value == "completed", "execution": execution.model_dump(mode="json")}


@router.post("")
async def upload_file(
    file: UploadFile = File(...),
    organization_id: str = Depends(get_organization_id),
    storage: ObjectStorage = Depends(get_storage),
):
    """Store a file without processing it."""
    data = await read_upload(file)
    key = f"uploads/{organization_id}/{file.filename}"
    stored = await asyncio.to_thread(
        storage.put, key, data, file.content_type or "application/pdf", {"original_name": file.filename}
    )
    return {"success": True, "file_key": stored.key, "size": stored.size}


@router.get("")
async def list_uploads(
    organization_id: str = Depends(get_organization_id),
    storage: ObjectStorage = Depends(get_storage),
):
    keys = await asyncio.to_thread(storage.list, f"uploads/{organization_id}/")
    return {"keys": keys}


@router.post("/process")
async def process_upload(
    file: UploadFile = File(...),
    document_type: Optional[DocumentType] = Form(default=None),
    workflow_id: Optional[str] = Form(default=None),
    processor_id: Optional[str] = Form(default=None),
    organization_id: str = Depends(get_organization_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Upload a document and run its workflow to completion."""
    data = await read_upload(file)
    return await _run_workflow(
        engine, organization_id, data, file.filename or "document.pdf",
        file.content_type or "application/pdf", document_type, workflow_id, processor_id,
    )


@router.post("/presign")
async def presign_upload(
    body: PresignUploadRequest,
    organization_id: str = Depends(get_organization_id),
    storage: ObjectStorage = Depends(get_storage),
):
    """Presigned URL the client can PUT a file to directly."""
    key = f"uploads/{organization_id}/{int(time.time() * 1000)}-{body.file_name}"
    url = await asyncio.to_thread(storage.presign, key, get_settings().PRESIGN_EXPIRY_SECONDS, "put")
    return {"url": url, "file_key": key}


@router.post("/{file_key:path}/process")
async def process_stored_file(
    file_key: str,
    body: ProcessFileRequest,
    organization_id: str = Depends(get_organization_id),
    storage: ObjectStorage = Depends(get_storage),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Run a workflow over a file uploaded earlier (for example through a presigned URL)."""
    _check_owned_key(file_key, organization_id)
    head = await asyncio.to_thread(storage.head, file_key)
    data = await asyncio.to_thread(storage.get, file_key)
    file_name = head.metadata.get("original_name") or file_key.rsplit("/", 1)[-1] or "document.pdf"
    return await _run_workflow(
        engine, organization_id, data, file_name, head.content_type,
        body.document_type, body.workflow_id, body.processor_id, file_key=file_key,
    )
