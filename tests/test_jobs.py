"""
Unit tests for background processing jobs and their event stream.

Run with: pytest tests/ -v
"""
import asyncio

import pytest

from conftest import ORG, StubProcessor
from reconflow.jobs import EventBus, ProcessingJobTracker, workflow_for
from reconflow.models.extraction import DocumentType, ExtractedInvoice
from reconflow.models.processing import (
    ProcessingEvent,
    ProcessingEventType,
    ProcessingJob,
    ProcessingStatus,
)
from reconflow.processors.base import ProcessorRegistry
from reconflow.utils.errors import NotFoundError, PreconditionError, StorageError, WorkflowNotFoundError
from reconflow.workflows import WorkflowEngine

PDF = b"%PDF-1.4 test document"


def event(job_id="job-1", event_type=ProcessingEventType.JOB_UPDATED) -> ProcessingEvent:
    return ProcessingEvent(type=event_type, job_id=job_id, data={"progress": 10})


def drain(subscription):
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


def make_tracker(ledger, storage, processor, **kwargs):
    registry = ProcessorRegistry()
    registry.register(processor)
    engine = WorkflowEngine(ledger, storage, registry)
    return ProcessingJobTracker(ledger, engine, storage, EventBus(max_queue_size=500), **kwargs)


class TestEventBus:
    """Tests for per-organization fan-out."""

    def test_publish_reaches_every_subscriber(self):
        bus = EventBus(max_queue_size=10)
        first = bus.subscribe(ORG)
        second = bus.subscribe(ORG)

        assert bus.publish(ORG, event()) == 2
        assert len(drain(first)) == 1
        assert len(drain(second)) == 1

    def test_organizations_are_isolated(self):
        bus = EventBus(max_queue_size=10)
        mine = bus.subscribe(ORG)
        other = bus.subscribe("org-other")

        bus.publish("org-other", event())

        assert drain(mine) == []
        assert len(drain(other)) == 1

    def test_full_queue_drops_without_blocking(self):
        bus = EventBus(max_queue_size=2)
        slow = bus.subscribe(ORG)
        fast = bus.subscribe(ORG)

        for index in range(3):
            bus.publish(ORG, event(job_id=f"job-{index}"))
            drain(fast)

        assert [e.job_id for e in drain(slow)] == ["job-0", "job-1"]

    def test_late_subscriber_misses_earlier_events(self):
        bus = EventBus(max_queue_size=10)
        bus.publish(ORG, event())

        late = bus.subscribe(ORG)

        assert drain(late) == []

    def test_close_unsubscribes(self):
        bus = EventBus(max_queue_size=10)
        subscription = bus.subscribe(ORG)

        subscription.close()
        subscription.close()

        assert bus.subscriber_count(ORG) == 0
        assert bus.publish(ORG, event()) == 0

    @pytest.mark.asyncio
    async def test_context_manager_and_timeout(self):
        bus = EventBus(max_queue_size=10)

        async with bus.subscribe(ORG) as subscription:
            assert bus.subscriber_count(ORG) == 1
            assert await subscription.get(timeout=0.01) is None
            bus.publish(ORG, event())
            received = await subscription.get(timeout=1)
            assert received.job_id == "job-1"

        assert bus.subscriber_count(ORG) == 0


class TestWorkflowSelection:

    def test_workflow_for_document_type(self):
        assert workflow_for(DocumentType.PAYMENT) == "payment-processing"
        assert workflow_for(DocumentType.REMITTANCE) == "remittance-processing"
        assert workflow_for(DocumentType.UNKNOWN) == "invoice-processing"


class TestProcessingJobTracker:
    """Tests for job submission, progress and failure reporting."""

    @pytest.mark.asyncio
    async def test_job_runs_to_completion(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())
        subscription = tracker.events.subscribe(ORG)

        job = tracker.submit(ORG, PDF, "inv.pdf")
        assert job.status == ProcessingStatus.QUEUED
        assert job.workflow_id == "invoice-processing"
        await tracker.wait_idle()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.COMPLETED
        assert stored.progress == 100
        assert stored.file_key == f"documents/org-test/{job.id}-inv.pdf"
        assert stored.document_type == DocumentType.INVOICE
        assert stored.result.saved_record_id == ledger.list_invoices(ORG)[0].id
        assert stored.result.extracted_data["invoice_number"] == "INV-001"

        events = drain(subscription)
        assert events[0].type == ProcessingEventType.JOB_CREATED
        assert events[-1].type == ProcessingEventType.JOB_COMPLETED
        assert "extracted_data" not in events[-1].data["result"]
        assert all(e.type == ProcessingEventType.JOB_UPDATED for e in events[1:-1])

        progress = [e.data["progress"] for e in events if "progress" in e.data]
        assert progress == sorted(progress)
        statuses = [e.data["status"] for e in events[1:-1] if "status" in e.data]
        assert statuses == [
            ProcessingStatus.UPLOADING,
            ProcessingStatus.PROCESSING,
            ProcessingStatus.EXTRACTING,
            ProcessingStatus.VALIDATING,
            ProcessingStatus.SAVING,
        ]

    @pytest.mark.asyncio
    async def test_document_type_selects_workflow(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())

        job = tracker.submit(ORG, PDF, "pay.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()

        assert job.workflow_id == "payment-processing"
        assert tracker.get_job(ORG, job.id).status == ProcessingStatus.COMPLETED
        assert len(ledger.list_payments(ORG)) == 1

    def test_unknown_workflow_is_rejected_up_front(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())

        with pytest.raises(WorkflowNotFoundError):
            tracker.submit(ORG, PDF, "doc.pdf", workflow_id="nope")

        assert ledger.count_jobs(ORG) == 0

    @pytest.mark.asyncio
    async def test_failed_extraction_fails_job(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(failures=3))
        subscription = tracker.events.subscribe(ORG)

        job = tracker.submit(ORG, PDF, "pay.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.FAILED
        assert stored.error == "Simulated extraction failure"
        assert stored.completed_at is not None

        last = drain(subscription)[-1]
        assert last.type == ProcessingEventType.JOB_FAILED
        assert last.data["error"] == "Simulated extraction failure"

    @pytest.mark.asyncio
    async def test_review_branch_fails_job_with_validation_error(self, ledger, storage):
        processor = StubProcessor(invoice=ExtractedInvoice(vendor_name="Acme Corp", amount=10.0))
        tracker = make_tracker(ledger, storage, processor)

        job = tracker.submit(ORG, PDF, "inv.pdf")
        await tracker.wait_idle()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.FAILED
        assert stored.error == "Validation failed: Missing invoice number"

    @pytest.mark.asyncio
    async def test_pipeline_timeout(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(delay=5.0), timeout_seconds=0.05)

        job = tracker.submit(ORG, PDF, "slow.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.FAILED
        assert stored.error == "Processing timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_submit_many(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())

        jobs = tracker.submit_many(
            ORG,
            [(PDF, "a.pdf", "application/pdf"), (PDF, "b.pdf", "application/pdf")],
            document_type=DocumentType.PAYMENT,
        )
        await tracker.wait_idle()

        assert len(jobs) == 2
        assert tracker.job_stats(ORG)["completed_jobs"] == 2
        assert tracker.active_count == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(delay=5.0))

        job = tracker.submit(ORG, PDF, "slow.pdf", document_type=DocumentType.PAYMENT)
        await asyncio.sleep(0.05)
        await tracker.shutdown()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.FAILED
        assert stored.error == "Processing cancelled"


class TestRetry:
    """Tests for retrying failed jobs from their stored file."""

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, ledger, storage):
        processor = StubProcessor(failures=3)
        tracker = make_tracker(ledger, storage, processor)
        job = tracker.submit(ORG, PDF, "pay.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()
        assert tracker.get_job(ORG, job.id).status == ProcessingStatus.FAILED

        retried = await tracker.retry(ORG, job.id)
        assert retried.status == ProcessingStatus.QUEUED
        assert retried.error is None
        await tracker.wait_idle()

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.COMPLETED
        assert stored.error is None
        assert len(ledger.list_payments(ORG)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_retries_run_once(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(failures=3))
        job = tracker.submit(ORG, PDF, "pay.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()

        results = await asyncio.gather(
            tracker.retry(ORG, job.id), tracker.retry(ORG, job.id), return_exceptions=True
        )

        assert sum(isinstance(r, ProcessingJob) for r in results) == 1
        assert sum(isinstance(r, PreconditionError) for r in results) == 1
        assert tracker.active_count == 1
        await tracker.wait_idle()
        assert tracker.get_job(ORG, job.id).status == ProcessingStatus.COMPLETED
        assert len(ledger.list_payments(ORG)) == 1

    @pytest.mark.asyncio
    async def test_retry_releases_job_when_file_is_gone(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(failures=3))
        job = tracker.submit(ORG, PDF, "pay.pdf", document_type=DocumentType.PAYMENT)
        await tracker.wait_idle()
        failed = tracker.get_job(ORG, job.id)
        storage.delete(failed.file_key)

        with pytest.raises(StorageError):
            await tracker.retry(ORG, job.id)

        stored = tracker.get_job(ORG, job.id)
        assert stored.status == ProcessingStatus.FAILED
        assert stored.error == failed.error

    @pytest.mark.asyncio
    async def test_retry_unknown_job(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())

        with pytest.raises(NotFoundError, match="Job not found"):
            await tracker.retry(ORG, "missing")

    @pytest.mark.asyncio
    async def test_retry_requires_failed_status(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())
        job = tracker.submit(ORG, PDF, "inv.pdf")
        await tracker.wait_idle()

        with pytest.raises(PreconditionError, match="Can only retry failed jobs"):
            await tracker.retry(ORG, job.id)

    @pytest.mark.asyncio
    async def test_retry_requires_stored_file(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())
        job = ProcessingJob(
            organization_id=ORG,
            file_name="lost.pdf",
            workflow_id="invoice-processing",
            status=ProcessingStatus.FAILED,
            error="No file buffer provided",
        )
        ledger.create_job(job)

        with pytest.raises(PreconditionError, match="No file to retry"):
            await tracker.retry(ORG, job.id)


class TestJobQueries:

    @pytest.mark.asyncio
    async def test_file_url_and_stats(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor(document_type=DocumentType.REMITTANCE))
        job = tracker.submit(ORG, PDF, "rem.pdf", document_type=DocumentType.REMITTANCE)
        await tracker.wait_idle()

        url = await tracker.file_url(ORG, job.id)
        assert url.endswith(f"remittances/org-test/{job.id}-rem.pdf")

        stats = tracker.job_stats(ORG)
        assert stats["total_remittances"] == 1
        assert stats["total_processing_jobs"] == 1
        assert stats["completed_jobs"] == 1
        assert stats["failed_jobs"] == 0
        assert stats["pending_jobs"] == 0
        assert stats["total_amount"] == 750.0
        assert stats["total_work_orders"] == 2

        remittance = ledger.list_remittances(ORG)[0]
        assert remittance.processing_job_id == job.id

    @pytest.mark.asyncio
    async def test_file_url_without_file(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())
        job = ledger.create_job(ProcessingJob(organization_id=ORG, file_name="x.pdf", workflow_id="invoice-processing"))

        with pytest.raises(NotFoundError, match="No file available"):
            await tracker.file_url(ORG, job.id)

    def test_jobs_scoped_to_organization(self, ledger, storage):
        tracker = make_tracker(ledger, storage, StubProcessor())
        job = ledger.create_job(ProcessingJob(organization_id=ORG, file_name="x.pdf", workflow_id="invoice-processing"))

        with pytest.raises(NotFoundError):
            tracker.get_job("org-other", job.id)
        assert tracker.list_jobs("org-other") == []
        assert [j.id for j in tracker.list_jobs(ORG)] == [job.id]
