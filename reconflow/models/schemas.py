"""Request bodies accepted by the HTTP API."""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date

from .extraction import DocumentType
from .ledger import (
    InvoiceStatus,
    PaymentStatus,
    PaymentMethod,
    ReconciliationStatus,
    ExceptionStatus,
)


class LineItemIn(BaseModel):
    id: str = Field(..., min_length=1)
    description: str
    quantity: float
    unit_price: float
    amount: float


class CreateInvoice(BaseModel):
    invoice_number: str = Field(..., min_length=1)
    vendor_name: str = Field(..., min_length=1)
    vendor_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    issue_date: date
    due_date: date
    description: str
    line_items: List[LineItemIn] = Field(default_factory=list)
    status: InvoiceStatus = InvoiceStatus.PENDING


class UpdateInvoice(BaseModel):
    invoice_number: Optional[str] = Field(default=None, min_length=1)
    vendor_name: Optional[str] = Field(default=None, min_length=1)
    vendor_id: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    description: Optional[str] = None
    line_items: Optional[List[LineItemIn]] = None
    status: Optional[InvoiceStatus] = None
    expected_version: Optional[int] = Field(default=None, description="Reject the update if the record moved on")


class CreatePayment(BaseModel):
    payment_reference: str = Field(..., min_length=1)
    payer_name: str = Field(..., min_length=1)
    payer_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    payment_date: date
    payment_method: PaymentMethod
    bank_reference: Optional[str] = None
    description: str
    status: PaymentStatus = PaymentStatus.PENDING


class UpdatePayment(BaseModel):
    payment_reference: Optional[str] = Field(default=None, min_length=1)
    payer_name: Optional[str] = Field(default=None, min_length=1)
    payer_id: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    bank_reference: Optional[str] = None
    description: Optional[str] = None
    status: Optional[PaymentStatus] = None
    expected_version: Optional[int] = None


class CreateReconciliation(BaseModel):
    invoice_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    notes: Optional[str] = None


class UpdateReconciliationStatus(BaseModel):
    status: ReconciliationStatus


class AutoReconcileRequest(BaseModel):
    min_confidence: Optional[float] = Field(default=None, ge=0, le=1)


class UpdateExceptionStatus(BaseModel):
    status: ExceptionStatus
    resolved_by: Optional[str] = None


class PresignUploadRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    content_type: Optional[str] = None


class ImportInvoicesRequest(BaseModel):
    invoices: List[CreateInvoice]


class ImportPaymentsRequest(BaseModel):
    payments: List[CreatePayment]


class ProcessFileRequest(BaseModel):
    """Run a workflow over a file that is already in object storage."""
    document_type: Optional[DocumentType] = None
    workflow_id: Optional[str] = None
    processor_id: Optional[str] = None
