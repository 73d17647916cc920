"""
Processing Job Tracker

Accepts uploaded documents, runs each through its workflow in the
background and keeps a persisted job record in step with the pipeline:

queued -> uploading -> processing -> extracting -> validating -> saving -> completed

Any non-terminal state can end in failed. Every transition is saved to the
ledger and published on the event bus for the organization.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from ..database.ledger_db import LedgerDatabase
from ..models.extraction import DocumentType
from ..models.ledger import utcnow
from ..models.processing import (
    ProcessingEvent,
    ProcessingEventType,
    ProcessingJob,
    ProcessingJobResult,
    ProcessingStatus,
)
from ..models.workflow import (
    DEFAULT_INVOICE_WORKFLOW,
    WORKFLOW_FOR_DOCUMENT_TYPE,
    StepResult,
    StepStatus,
    WorkflowExecution,
    WorkflowInput,
    WorkflowStatus,
    WorkflowStep,
)
from ..storage.object_storage import ObjectStorage
from ..utils.config import JOB_PROGRESS, get_settings
from ..utils.errors import NotFoundError, PreconditionError, WorkflowNotFoundError
from ..utils.logging import with_correlation
from ..workflows.engine import WorkflowEngine
from .events import EventBus

logger = logging.getLogger(__name__)

# (file bytes, file name, mime type)
UploadedFile = Tuple[bytes, str, str]


def workflow_for(document_type: DocumentType) -> str:
    return WORKFLOW_FOR_DOCUMENT_TYPE.get(document_type, DEFAULT_INVOICE_WORKFLOW.id)


class ProcessingJobTracker:
    """Background document pipelines with persisted, observable progress."""

    def __init__(
        self,
        ledger: LedgerDatabase,
        engine: WorkflowEngine,
        storage: ObjectStorage,
        events: EventBus,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.ledger = ledger
        self.engine = engine
        self.storage = storage
        self.events = events
        self.timeout_seconds = timeout_seconds or settings.PIPELINE_TIMEOUT_SECONDS
        self.presign_expiry = settings.PRESIGN_EXPIRY_SECONDS
        self._tasks: Set[asyncio.Task] = set()

    # ============== Submission ==============

    def submit(
        self,
        organization_id: str,
        file_bytes: bytes,
        file_name: str,
        mime_type: str = "application/pdf",
        document_type: DocumentType = DocumentType.UNKNOWN,
        workflow_id: Optional[str] = None,
        processor_id: Optional[str] = None,
    ) -> ProcessingJob:
        """
        Queue a document and start its pipeline in the background.

        The workflow defaults to the one registered for the document type
        (invoice processing when the type is unknown).

        Returns:
            The queued job, before any step has run

        Raises:
            WorkflowNotFoundError: if the workflow id is not registered
        """
        document_type = DocumentType(document_type)
        workflow_id = workflow_id or workflow_for(document_type)
        if self.engine.get_workflow(workflow_id) is None:
            raise WorkflowNotFoundError(workflow_id)

        job = ProcessingJob(
            organization_id=organization_id,
            file_name=file_name,
            file_size=len(file_bytes),
            mime_type=mime_type or "application/pdf",
            document_type=document_type,
            status=ProcessingStatus.QUEUED,
            workflow_id=workflow_id,
            processor_id=processor_id,
            progress=0,
        )
        self.ledger.create_job(job)
        self._publish(job, ProcessingEventType.JOB_CREATED, job.model_dump(mode="json"))
        logger.info(f"Queued job {job.id} ({job.workflow_id}) for {file_name}")

        self._start(job, file_bytes)
        return job

    def submit_many(
        self,
        organization_id: str,
        files: List[UploadedFile],
        document_type: DocumentType = DocumentType.UNKNOWN,
        workflow_id: Optional[str] = None,
        processor_id: Optional[str] = None,
    ) -> List[ProcessingJob]:
        return [
            self.submit(
                organization_id, file_bytes, file_name, mime_type,
                document_type=document_type, workflow_id=workflow_id, processor_id=processor_id,
            )
            for file_bytes, file_name, mime_type in files
        ]

    async def retry(self, organization_id: str, job_id: str) -> ProcessingJob:
        """
        Re-run a failed job from its stored file.

        Raises:
            NotFoundError: if the job does not exist
            PreconditionError: if the job has not failed or never stored its file
            StorageError: if the stored file cannot be read
        """
        job = self.get_job(organization_id, job_id)
        if job.status != ProcessingStatus.FAILED:
            raise PreconditionError("Can only retry failed jobs")
        if not job.file_key:
            raise PreconditionError("No file to retry")

        # Claim the job before the first await so a concurrent retry sees it as queued
        previous_error, previous_progress = job.error, job.progress
        job.status = ProcessingStatus.QUEUED
        job.progress = 0
        job.error = None
        self.ledger.update_job(job)

        try:
            file_bytes = await asyncio.to_thread(self.storage.get, job.file_key)
        except Exception:
            job.status = ProcessingStatus.FAILED
            job.error = previous_error
            job.progress = previous_progress
            self.ledger.update_job(job)
            raise

        job.current_step = None
        job.completed_at = None
        job.result = None
        job.started_at = utcnow()
        self.ledger.update_job(job)
        self._publish(job, ProcessingEventType.JOB_UPDATED, {"status": job.status, "progress": 0})
        logger.info(f"Retrying job {job.id}")

        self._start(job, file_bytes)
        return job

    def _start(self, job: ProcessingJob, file_bytes: bytes) -> None:
        task = asyncio.create_task(self.run(job, file_bytes))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ============== Pipeline ==============

    async def run(self, job: ProcessingJob, file_bytes: bytes) -> ProcessingJob:
        """
        Drive one job through its workflow.

        Failures, including timeouts, end up on the job record and as a
        job_failed event; they are not raised to the caller.
        """
        started = time.monotonic()
        metadata: Dict[str, Any] = {"organization_id": job.organization_id, "job_id": job.id}
        if job.document_type != DocumentType.UNKNOWN:
            metadata["document_type"] = job.document_type.value

        workflow_input = WorkflowInput(
            file_bytes=file_bytes,
            file_key=job.file_key,
            file_name=job.file_name,
            mime_type=job.mime_type,
            metadata=metadata,
        )

        async def on_step(event: str, step: WorkflowStep, execution: WorkflowExecution,
                          result: Optional[StepResult]) -> None:
            if event == "started":
                self._step_started(job, step)
            else:
                self._step_finished(job, step, execution, result)

        with with_correlation(organization_id=job.organization_id, job_id=job.id):
            try:
                execution = await asyncio.wait_for(
                    self.engine.execute(job.workflow_id, workflow_input, job.processor_id, on_step=on_step),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                self._fail(job, f"Processing timed out after {self.timeout_seconds:g}s")
                return job
            except asyncio.CancelledError:
                self._fail(job, "Processing cancelled")
                raise
            except Exception as e:
                logger.exception(f"Pipeline for job {job.id} crashed")
                self._fail(job, str(e) or "Processing failed")
                return job

            if execution.status == WorkflowStatus.COMPLETED and execution.output.saved_record_id:
                self._complete(job, execution, started)
            else:
                self._fail(job, self._failure_reason(execution))
        return job

    def _step_started(self, job: ProcessingJob, step: WorkflowStep) -> None:
        checkpoint = JOB_PROGRESS.get(step.type.value)
        if checkpoint is None:
            return
        changes: Dict[str, Any] = {"status": ProcessingStatus(checkpoint["status"]), "current_step": step.id}
        if checkpoint["start"] is not None:
            changes["progress"] = checkpoint["start"]
        self._update(job, changes)

    def _step_finished(
        self, job: ProcessingJob, step: WorkflowStep, execution: WorkflowExecution, result: StepResult
    ) -> None:
        if result.status != StepStatus.SUCCESS:
            return
        checkpoint = JOB_PROGRESS.get(step.type.value)
        changes: Dict[str, Any] = {}
        if step.type.value == "upload" and execution.output.file_key:
            changes["file_key"] = execution.output.file_key
        if step.type.value == "classify" and execution.output.document_type:
            changes["document_type"] = execution.output.document_type
        if checkpoint and checkpoint["done"] is not None and checkpoint["done"] != checkpoint["start"]:
            changes["progress"] = checkpoint["done"]
        if changes:
            self._update(job, changes)

    @staticmethod
    def _failure_reason(execution: WorkflowExecution) -> str:
        """Execution error, else the last failed step's error (a failure branch was taken)."""
        if execution.error:
            return execution.error
        failed = execution.failed_steps
        if failed and failed[-1].error:
            return failed[-1].error
        return "Processing failed"

    def _complete(self, job: ProcessingJob, execution: WorkflowExecution, started: float) -> None:
        output = execution.output
        extracted = output.extracted_data
        job.result = ProcessingJobResult(
            document_type=(output.document_type or job.document_type).value,
            extracted_data=extracted.model_dump(mode="json") if extracted is not None else None,
            saved_record_id=output.saved_record_id,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            confidence=getattr(extracted, "confidence", None),
        )
        job.status = ProcessingStatus.COMPLETED
        job.progress = 100
        job.current_step = None
        job.completed_at = utcnow()
        self.ledger.update_job(job)
        self._publish(job, ProcessingEventType.JOB_COMPLETED, {
            "status": job.status,
            "progress": 100,
            "result": job.result.model_dump(mode="json", exclude={"extracted_data"}),
        })
        logger.info(f"Job {job.id} completed: saved {job.result.document_type} {output.saved_record_id}")

    def _fail(self, job: ProcessingJob, error: str) -> None:
        job.status = ProcessingStatus.FAILED
        job.error = error
        job.completed_at = utcnow()
        self.ledger.update_job(job)
        self._publish(job, ProcessingEventType.JOB_FAILED, {"status": job.status, "error": error})
        logger.warning(f"Job {job.id} failed: {error}")

    def _update(self, job: ProcessingJob, changes: Dict[str, Any]) -> None:
        for name, value in changes.items():
            setattr(job, name, value)
        self.ledger.update_job(job)
        self._publish(job, ProcessingEventType.JOB_UPDATED, changes)

    def _publish(self, job: ProcessingJob, event_type: ProcessingEventType, data: Dict[str, Any]) -> None:
        self.events.publish(job.organization_id, ProcessingEvent(type=event_type, job_id=job.id, data=data))

    # ============== Queries ==============

    def get_job(self, organization_id: str, job_id: str) -> ProcessingJob:
        job = self.ledger.get_job(organization_id, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def list_jobs(
        self, organization_id: str, status: Optional[ProcessingStatus] = None, limit: int = 50
    ) -> List[ProcessingJob]:
        return self.ledger.list_jobs(organization_id, status=status, limit=limit)

    async def file_url(self, organization_id: str, job_id: str) -> str:
        """Presigned download URL for the job's stored document."""
        job = self.get_job(organization_id, job_id)
        if not job.file_key:
            raise NotFoundError("No file available")
        return await asyncio.to_thread(self.storage.presign, job.file_key, self.presign_expiry)

    def job_stats(self, organization_id: str) -> Dict[str, Any]:
        total_jobs = self.ledger.count_jobs(organization_id)
        completed = self.ledger.count_jobs(organization_id, status=ProcessingStatus.COMPLETED)
        failed = self.ledger.count_jobs(organization_id, status=ProcessingStatus.FAILED)
        remittances = self.ledger.list_remittances(organization_id, limit=None)

        return {
            "total_remittances": len(remittances),
            "total_processing_jobs": total_jobs,
            "completed_jobs": completed,
            "failed_jobs": failed,
            "pending_jobs": total_jobs - completed - failed,
            "total_amount": sum(r.total_amount for r in remittances),
            "total_work_orders": sum(len(r.jobs) for r in remittances),
        }

    # ============== Lifecycle ==============

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every running pipeline, including ones started meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
