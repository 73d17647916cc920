"""Data models for invoice/payment reconciliation."""

from .ledger import (
    Invoice,
    LineItem,
    Payment,
    Reconciliation,
    ReconciliationSuggestion,
    ExceptionRecord,
    Remittance,
    RemittanceJob,
    DashboardStats,
    InvoiceStatus,
    PaymentStatus,
    PaymentMethod,
    MatchType,
    MatchedBy,
    DiscrepancyType,
    ReconciliationStatus,
    ExceptionType,
    ExceptionStatus,
    Severity,
    RemittanceStatus,
)
from .extraction import (
    DocumentType,
    DocumentClassification,
    ExtractedInvoice,
    ExtractedPayment,
    ExtractedRemittance,
    ExtractedData,
    ProcessorContext,
    ProcessingResult,
)
from .workflow import (
    StepType,
    StepStatus,
    WorkflowStatus,
    WorkflowStep,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowInput,
    WorkflowOutput,
    StepResult,
)
from .processing import (
    ProcessingJob,
    ProcessingJobResult,
    ProcessingStatus,
    ProcessingEvent,
    ProcessingEventType,
)

__all__ = [
    "Invoice",
    "LineItem",
    "Payment",
    "Reconciliation",
    "ReconciliationSuggestion",
    "ExceptionRecord",
    "Remittance",
    "RemittanceJob",
    "DashboardStats",
    "InvoiceStatus",
    "PaymentStatus",
    "PaymentMethod",
    "MatchType",
    "MatchedBy",
    "DiscrepancyType",
    "ReconciliationStatus",
    "ExceptionType",
    "ExceptionStatus",
    "Severity",
    "RemittanceStatus",
    "DocumentType",
    "DocumentClassification",
    "ExtractedInvoice",
    "ExtractedPayment",
    "ExtractedRemittance",
    "ExtractedData",
    "ProcessorContext",
    "ProcessingResult",
    "StepType",
    "StepStatus",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowInput",
    "WorkflowOutput",
    "StepResult",
    "ProcessingJob",
    "ProcessingJobResult",
    "ProcessingStatus",
    "ProcessingEvent",
    "ProcessingEventType",
]
