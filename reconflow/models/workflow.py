"""
Workflow definitions and execution records.

A workflow is a directed graph of steps over step ids; each step names the
step to run next on success and, optionally, on failure.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from .extraction import DocumentType, ExtractedData
from .ledger import new_id, utcnow


class StepType(str, Enum):
    UPLOAD = "upload"
    CLASSIFY = "classify"
    EXTRACT = "extract"
    VALIDATE = "validate"
    TRANSFORM = "transform"
    SAVE = "save"
    NOTIFY = "notify"


class TriggerType(str, Enum):
    UPLOAD = "upload"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    API = "api"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class WorkflowStep(BaseModel):
    id: str
    type: StepType
    processor_id: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    on_success: Optional[str] = None
    on_failure: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    retry_delay_ms: int = Field(default=0, ge=0)


class WorkflowTrigger(BaseModel):
    type: TriggerType
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    """Named, versioned step graph."""
    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    trigger: WorkflowTrigger
    steps: List[WorkflowStep] = Field(..., min_length=1)
    default_processor: Optional[str] = None

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class WorkflowInput(BaseModel):
    """Document handed to an execution. Raw bytes are never kept on the record."""
    file_bytes: Optional[bytes] = Field(default=None, exclude=True)
    file_key: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowOutput(BaseModel):
    document_type: Optional[DocumentType] = None
    classification_confidence: Optional[float] = None
    extracted_data: Optional[ExtractedData] = None
    saved_record_id: Optional[str] = None
    file_key: Optional[str] = None


class StepResult(BaseModel):
    """Outcome of the final attempt of one step visit."""
    step_id: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    attempts: int = 1
    output: Optional[Any] = None
    error: Optional[str] = None


class WorkflowExecution(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    current_step_id: Optional[str] = None
    step_results: List[StepResult] = Field(default_factory=list)
    input: WorkflowInput
    output: WorkflowOutput = Field(default_factory=WorkflowOutput)
    error: Optional[str] = None

    @property
    def failed_steps(self) -> List[StepResult]:
        return [r for r in self.step_results if r.status == StepStatus.FAILURE]


# ============== Predefined Workflows ==============

DEFAULT_INVOICE_WORKFLOW = WorkflowDefinition(
    id="invoice-processing",
    name="Invoice Processing",
    description="Standard workflow for processing invoice documents",
    trigger=WorkflowTrigger(type=TriggerType.UPLOAD, config={"file_types": ["application/pdf"]}),
    default_processor="pattern-ocr",
    steps=[
        WorkflowStep(id="upload", type=StepType.UPLOAD, on_success="classify"),
        WorkflowStep(id="classify", type=StepType.CLASSIFY, on_success="extract",
                     on_failure="notify-failure"),
        WorkflowStep(id="extract", type=StepType.EXTRACT, on_success="validate",
                     on_failure="notify-failure", retry_count=2, retry_delay_ms=1000),
        WorkflowStep(id="validate", type=StepType.VALIDATE, on_success="save",
                     on_failure="notify-review"),
        WorkflowStep(id="save", type=StepType.SAVE, on_success="notify-success"),
        WorkflowStep(id="notify-success", type=StepType.NOTIFY, config={"type": "success"}),
        WorkflowStep(id="notify-failure", type=StepType.NOTIFY, config={"type": "failure"}),
        WorkflowStep(id="notify-review", type=StepType.NOTIFY, config={"type": "review"}),
    ],
)

DEFAULT_PAYMENT_WORKFLOW = WorkflowDefinition(
    id="payment-processing",
    name="Payment Processing",
    description="Standard workflow for processing payment documents",
    trigger=WorkflowTrigger(type=TriggerType.UPLOAD, config={"file_types": ["application/pdf"]}),
    default_processor="pattern-ocr",
    steps=[
        WorkflowStep(id="upload", type=StepType.UPLOAD, on_success="classify"),
        WorkflowStep(id="classify", type=StepType.CLASSIFY, on_success="extract"),
        WorkflowStep(id="extract", type=StepType.EXTRACT, on_success="validate", retry_count=2),
        WorkflowStep(id="validate", type=StepType.VALIDATE, on_success="save"),
        WorkflowStep(id="save", type=StepType.SAVE),
    ],
)

DEFAULT_REMITTANCE_WORKFLOW = WorkflowDefinition(
    id="remittance-processing",
    name="Remittance Processing",
    description="Reads remittance advices listing the work orders a fleet company paid for",
    trigger=WorkflowTrigger(type=TriggerType.API),
    default_processor="pattern-ocr",
    steps=[
        WorkflowStep(id="upload", type=StepType.UPLOAD, on_success="classify",
                     config={"key_prefix": "remittances"}),
        WorkflowStep(id="classify", type=StepType.CLASSIFY, on_success="extract"),
        WorkflowStep(id="extract", type=StepType.EXTRACT, on_success="validate", retry_count=1,
                     retry_delay_ms=1000),
        WorkflowStep(id="validate", type=StepType.VALIDATE, on_success="save"),
        WorkflowStep(id="save", type=StepType.SAVE),
    ],
)

DEFAULT_WORKFLOWS = [DEFAULT_INVOICE_WORKFLOW, DEFAULT_PAYMENT_WORKFLOW, DEFAULT_REMITTANCE_WORKFLOW]

WORKFLOW_FOR_DOCUMENT_TYPE = {
    DocumentType.INVOICE: DEFAULT_INVOICE_WORKFLOW.id,
    DocumentType.PAYMENT: DEFAULT_PAYMENT_WORKFLOW.id,
    DocumentType.REMITTANCE: DEFAULT_REMITTANCE_WORKFLOW.id,
}
