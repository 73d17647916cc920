"""
Workflow Engine for document processing.

Runs a workflow definition as a finite-state machine over step ids:

1. Start at the first step of the definition
2. Run the step, retrying it up to retry_count more times
3. Follow on_success, or on_failure when the step failed
4. Stop when the branch taken has no next step, or a failure has nowhere to go

Every step visit records exactly one StepResult (the final attempt).
A bounded transition counter stops misconfigured graphs that loop.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, timezone, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..database.ledger_db import LedgerDatabase
from ..models.extraction import (
    DocumentType,
    ExtractedInvoice,
    ExtractedPayment,
    ExtractedRemittance,
    ProcessorContext,
)
from ..models.ledger import (
    Invoice,
    LineItem,
    Payment,
    PaymentMethod,
    Remittance,
    RemittanceJob,
    RemittanceJobStatus,
    RemittanceStatus,
    new_id,
    utcnow,
)
from ..models.workflow import (
    DEFAULT_WORKFLOWS,
    StepResult,
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowInput,
    WorkflowOutput,
    WorkflowStatus,
    WorkflowStep,
)
from ..processors.base import BaseProcessor, ProcessorRegistry
from ..storage.object_storage import ObjectStorage
from ..utils.config import VALIDATION_RULES, get_settings
from ..utils.errors import (
    PreconditionError,
    ProcessorError,
    ValidationError,
    WorkflowCycleError,
    WorkflowNotFoundError,
)
from ..utils.logging import with_correlation

logger = logging.getLogger(__name__)

# Called with ("started", step, execution, None) and ("finished", step, execution, result)
StepListener = Callable[[str, WorkflowStep, WorkflowExecution, Optional[StepResult]], Awaitable[None]]


@dataclass
class ExecutionState:
    """Mutable context threaded between the steps of one execution."""
    input: WorkflowInput
    processor_id: Optional[str] = None
    context: Optional[ProcessorContext] = None
    output: WorkflowOutput = field(default_factory=WorkflowOutput)

    @property
    def organization_id(self) -> Optional[str]:
        return self.input.metadata.get("organization_id")


class WorkflowEngine:
    """
    Executes workflow definitions against single documents.

    Collaborators:
    - ledger: where save steps persist invoices, payments and remittances
    - storage: where upload steps put the source document
    - processors: registry consulted by classify and extract steps
    """

    def __init__(
        self,
        ledger: LedgerDatabase,
        storage: ObjectStorage,
        processors: ProcessorRegistry,
        max_transitions: Optional[int] = None,
        max_executions: int = 500,
    ):
        self.ledger = ledger
        self.storage = storage
        self.processors = processors
        self.max_transitions = max_transitions or get_settings().WORKFLOW_MAX_TRANSITIONS
        self.max_executions = max_executions
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._executions: Dict[str, WorkflowExecution] = {}

        for definition in DEFAULT_WORKFLOWS:
            self.register_workflow(definition)

        self._handlers = {
            StepType.UPLOAD: self._step_upload,
            StepType.CLASSIFY: self._step_classify,
            StepType.EXTRACT: self._step_extract,
            StepType.VALIDATE: self._step_validate,
            StepType.TRANSFORM: self._step_transform,
            StepType.SAVE: self._step_save,
            StepType.NOTIFY: self._step_notify,
        }

    # ============== Registry ==============

    def register_workflow(self, definition: WorkflowDefinition) -> None:
        self._workflows[definition.id] = definition

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def list_workflows(self) -> List[WorkflowDefinition]:
        return list(self._workflows.values())

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self._executions.get(execution_id)

    def list_executions(self, workflow_id: Optional[str] = None, limit: int = 50) -> List[WorkflowExecution]:
        """Most recent executions first."""
        executions = [
            e for e in reversed(list(self._executions.values()))
            if workflow_id is None or e.workflow_id == workflow_id
        ]
        return executions[:limit]

    def _remember(self, execution: WorkflowExecution) -> None:
        self._executions[execution.id] = execution
        while len(self._executions) > self.max_executions:
            self._executions.pop(next(iter(self._executions)))

    # ============== Execution ==============

    async def execute(
        self,
        workflow_id: str,
        workflow_input: WorkflowInput,
        processor_id: Optional[str] = None,
        on_step: Optional[StepListener] = None,
    ) -> WorkflowExecution:
        """
        Run a workflow against one document.

        Args:
            workflow_id: Registered workflow definition id
            workflow_input: File bytes/name/mime type plus metadata
                (organization_id is required by save steps)
            processor_id: Processor to use for classify/extract steps
            on_step: Awaited before and after every step

        Returns:
            The finished execution (completed or failed)

        Raises:
            WorkflowNotFoundError: if the workflow id is not registered
        """
        definition = self.get_workflow(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)

        execution = WorkflowExecution(
            workflow_id=workflow_id,
            status=WorkflowStatus.RUNNING,
            input=workflow_input.model_copy(update={"file_bytes": None}),
        )
        self._remember(execution)
        state = ExecutionState(input=workflow_input, processor_id=processor_id)

        with with_correlation(execution_id=execution.id, organization_id=state.organization_id):
            logger.info(f"Starting workflow {workflow_id} for {workflow_input.file_name}")
            try:
                await self._run(definition, execution, state, on_step)
            except asyncio.CancelledError:
                execution.status = WorkflowStatus.CANCELLED
                execution.error = "Execution cancelled"
                execution.completed_at = utcnow()
                logger.warning(f"Workflow {workflow_id} cancelled at step {execution.current_step_id}")
                raise
            except WorkflowCycleError as e:
                self._fail(execution, e.message)

        return execution

    async def _run(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        state: ExecutionState,
        on_step: Optional[StepListener],
    ) -> None:
        step: Optional[WorkflowStep] = definition.steps[0]
        transitions = 0

        while step is not None:
            transitions += 1
            if transitions > self.max_transitions:
                raise WorkflowCycleError(definition.id, self.max_transitions)

            execution.current_step_id = step.id
            await self._emit(on_step, "started", step, execution, None)

            with with_correlation(step_id=step.id):
                result = await self._run_step(step, definition, state)
            execution.step_results.append(result)
            execution.output = state.output.model_copy()

            await self._emit(on_step, "finished", step, execution, result)

            if result.status == StepStatus.SUCCESS:
                next_id = step.on_success
            elif step.on_failure:
                logger.info(f"Step {step.id} failed, branching to {step.on_failure}")
                next_id = step.on_failure
            else:
                self._fail(execution, result.error)
                return

            if next_id is None:
                break

            step = definition.get_step(next_id)
            if step is None:
                self._fail(execution, f"Unknown step: {next_id}")
                return

        execution.status = WorkflowStatus.COMPLETED
        execution.output = state.output.model_copy()
        execution.completed_at = utcnow()
        logger.info(f"Workflow {definition.id} completed (saved record: {state.output.saved_record_id})")

    def _fail(self, execution: WorkflowExecution, error: Optional[str]) -> None:
        execution.status = WorkflowStatus.FAILED
        execution.error = error or "Step failed"
        execution.completed_at = utcnow()
        logger.warning(f"Workflow {execution.workflow_id} failed: {execution.error}")

    @staticmethod
    async def _emit(listener, event, step, execution, result) -> None:
        if listener is None:
            return
        try:
            await listener(event, step, execution, result)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Step listener failed on {event} of {step.id}")

    async def _run_step(
        self, step: WorkflowStep, definition: WorkflowDefinition, state: ExecutionState
    ) -> StepResult:
        """Run one step with its retry policy; only the final attempt is reported."""
        handler = self._handlers[step.type]
        max_attempts = step.retry_count + 1
        attempts = 0

        while True:
            attempts += 1
            started_at = utcnow()
            try:
                output = await handler(step, definition, state)
                return StepResult(
                    step_id=step.id,
                    status=StepStatus.SUCCESS,
                    started_at=started_at,
                    completed_at=utcnow(),
                    attempts=attempts,
                    output=output,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = str(e) or e.__class__.__name__
                if attempts >= max_attempts:
                    logger.warning(f"Step {step.id} failed after {attempts} attempt(s): {error}")
                    return StepResult(
                        step_id=step.id,
                        status=StepStatus.FAILURE,
                        started_at=started_at,
                        completed_at=utcnow(),
                        attempts=attempts,
                        error=error,
                    )
                logger.info(f"Step {step.id} attempt {attempts}/{max_attempts} failed: {error}")
                await asyncio.sleep(step.retry_delay_ms / 1000)

    def _select_processor(
        self, step: WorkflowStep, definition: WorkflowDefinition, state: ExecutionState
    ) -> BaseProcessor:
        """Explicit processor, then the step's, then the workflow default, then the first registered."""
        requested = state.processor_id or step.processor_id
        if requested:
            processor = self.processors.get(requested)
            if processor is None:
                raise ProcessorError(f"No processor available: {requested}")
            return processor

        processor = None
        if definition.default_processor:
            processor = self.processors.get(definition.default_processor)
        processor = processor or self.processors.first()
        if processor is None:
            raise ProcessorError("No processor available")
        return processor

    # ============== Step handlers ==============

    async def _step_upload(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        if not state.input.file_bytes:
            raise PreconditionError("No file buffer provided")

        file_name = state.input.file_name or "document.pdf"
        mime_type = state.input.mime_type or "application/pdf"
        prefix = step.config.get("key_prefix", "documents")
        # A retried job reuses its own key
        unique = state.input.metadata.get("job_id") or new_id()
        key = f"{prefix}/{state.organization_id}/{unique}-{file_name}"

        await asyncio.to_thread(self.storage.put, key, state.input.file_bytes, mime_type)

        hint = state.input.metadata.get("document_type")
        state.context = ProcessorContext(
            file_bytes=state.input.file_bytes,
            file_name=file_name,
            mime_type=mime_type,
            file_url=key,
            expected_type=DocumentType(hint) if hint else None,
        )
        state.output.file_key = key
        return {"file_key": key, "size": len(state.input.file_bytes)}

    async def _step_classify(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        if state.context is None:
            raise PreconditionError("No context available for classification")

        processor = self._select_processor(step, definition, state)
        classification = await processor.classify_document(state.context)

        state.output.document_type = classification.type
        state.output.classification_confidence = classification.confidence
        return classification.model_dump(mode="json")

    async def _step_extract(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        if state.context is None:
            raise PreconditionError("No context available for extraction")

        processor = self._select_processor(step, definition, state)
        document_type = state.output.document_type or DocumentType.INVOICE

        if document_type == DocumentType.INVOICE:
            result = await processor.extract_invoice(state.context)
        elif document_type == DocumentType.PAYMENT:
            result = await processor.extract_payment(state.context)
        elif document_type == DocumentType.REMITTANCE:
            result = await processor.extract_remittance(state.context)
        else:
            result = await processor.process(state.context)

        if not result.success or result.data is None:
            raise ProcessorError(result.error or "Extraction failed")

        state.output.extracted_data = result.data
        state.output.document_type = DocumentType(result.data.document_type)
        return {
            "processor_id": result.processor_id,
            "processing_time_ms": result.processing_time_ms,
            "document_type": result.data.document_type,
        }

    async def _step_validate(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        data = state.output.extracted_data
        if data is None:
            raise PreconditionError("No extracted data to validate")

        errors = []
        for field_name, message in VALIDATION_RULES.get(data.document_type, []):
            value = getattr(data, field_name, None)
            if isinstance(value, (int, float)):
                valid = value > 0
            elif isinstance(value, str):
                valid = bool(value.strip())
            else:
                valid = bool(value)
            if not valid:
                errors.append(message)

        if errors:
            raise ValidationError(errors)
        return {"valid": True}

    async def _step_transform(self, step, definition, state: ExecutionState) -> Optional[Dict[str, Any]]:
        data = state.output.extracted_data
        return data.model_dump(mode="json", exclude={"raw_text"}) if data is not None else None

    async def _step_save(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        data = state.output.extracted_data
        if data is None:
            raise PreconditionError("No extracted data to save")

        organization_id = state.organization_id
        if not organization_id:
            raise PreconditionError("No organizationId provided for save step")

        if isinstance(data, ExtractedInvoice):
            record = self.ledger.create_invoice(self._invoice_from(data, organization_id))
        elif isinstance(data, ExtractedPayment):
            record = self.ledger.create_payment(self._payment_from(data, organization_id))
        elif isinstance(data, ExtractedRemittance):
            record = self.ledger.create_remittance(self._remittance_from(data, organization_id, state))
        else:
            raise PreconditionError(f"Cannot save document type: {data.document_type}")

        state.output.saved_record_id = record.id
        logger.info(f"Saved {data.document_type} {record.id}")
        return {"saved_record_id": record.id, "document_type": data.document_type}

    async def _step_notify(self, step, definition, state: ExecutionState) -> Dict[str, Any]:
        notify_type = step.config.get("type")
        logger.info(
            f"Notification: {notify_type} "
            f"(document_type={state.output.document_type}, saved_record_id={state.output.saved_record_id})"
        )
        return {"notified": True, "type": notify_type}

    # ============== Record builders ==============

    @staticmethod
    def _timestamp_ms() -> int:
        return int(time.time() * 1000)

    def _invoice_from(self, data: ExtractedInvoice, organization_id: str) -> Invoice:
        issue_date = data.issue_date or _today()
        return Invoice(
            organization_id=organization_id,
            invoice_number=data.invoice_number,
            vendor_name=data.vendor_name,
            vendor_id=data.vendor_id or f"V-{self._timestamp_ms()}",
            amount=data.amount,
            currency=data.currency,
            issue_date=issue_date,
            due_date=data.due_date or issue_date,
            description=data.description or "",
            line_items=[
                LineItem(
                    id=f"LI-{index}",
                    description=item.description,
                    quantity=item.quantity if item.quantity is not None else 1,
                    unit_price=item.unit_price if item.unit_price is not None else item.amount,
                    amount=item.amount,
                )
                for index, item in enumerate(data.line_items)
            ],
        )

    def _payment_from(self, data: ExtractedPayment, organization_id: str) -> Payment:
        return Payment(
            organization_id=organization_id,
            payment_reference=data.payment_reference,
            payer_name=data.payer_name,
            payer_id=data.payer_id or f"P-{self._timestamp_ms()}",
            amount=data.amount,
            currency=data.currency,
            payment_date=data.payment_date or _today(),
            payment_method=data.payment_method or PaymentMethod.OTHER,
            bank_reference=data.bank_reference,
            description=data.description or "",
        )

    @staticmethod
    def _remittance_from(data: ExtractedRemittance, organization_id: str, state: ExecutionState) -> Remittance:
        return Remittance(
            organization_id=organization_id,
            remittance_number=data.remittance_number,
            fleet_company_name=data.fleet_company_name,
            fleet_company_id=data.fleet_company_id,
            shop_name=data.shop_name,
            shop_id=data.shop_id,
            remittance_date=data.remittance_date,
            payment_date=data.payment_date,
            total_amount=data.total_amount,
            currency=data.currency,
            payment_method=data.payment_method,
            check_number=data.check_number,
            bank_reference=data.bank_reference,
            jobs=[
                RemittanceJob(
                    work_order_number=job.work_order_number,
                    vehicle_info=job.vehicle_info,
                    service_date=job.service_date,
                    description=job.description,
                    labor_amount=job.labor_amount,
                    parts_amount=job.parts_amount,
                    total_amount=job.total_amount,
                    status=job.status or RemittanceJobStatus.PAID,
                )
                for job in data.jobs
            ],
            deductions=data.deductions,
            notes=data.notes,
            source_file_key=state.output.file_key or state.input.file_key,
            processing_job_id=state.input.metadata.get("job_id"),
            status=RemittanceStatus.COMPLETED,
            confidence=data.confidence,
        )


def _today() -> date:
    return datetime.now(timezone.utc).date()
