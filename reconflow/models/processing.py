"""Processing job records and the events published while a job runs."""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from .extraction import DocumentType
from .ledger import new_id, utcnow


class ProcessingStatus(str, Enum):
    """Job lifecycle: queued through saving, ending in completed or failed."""
    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class ProcessingJobResult(BaseModel):
    document_type: str
    extracted_data: Optional[Dict[str, Any]] = None
    saved_record_id: Optional[str] = None
    processing_time_ms: int = 0
    confidence: Optional[float] = None


class ProcessingJob(BaseModel):
    """Tracked lifecycle of one document moving through a workflow."""
    id: str = Field(default_factory=new_id)
    organization_id: str
    file_name: str
    file_key: Optional[str] = None
    file_size: int = 0
    mime_type: str = "application/pdf"
    document_type: DocumentType = DocumentType.UNKNOWN
    status: ProcessingStatus = ProcessingStatus.QUEUED
    workflow_id: str
    processor_id: Optional[str] = None
    current_step: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    result: Optional[ProcessingJobResult] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ProcessingEventType(str, Enum):
    JOB_CREATED = "job_created"
    JOB_UPDATED = "job_updated"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"


class ProcessingEvent(BaseModel):
    """Job lifecycle notification carrying the changed job fields."""
    type: ProcessingEventType
    job_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
