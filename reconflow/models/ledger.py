"""
Data models for the reconciliation ledger.
These models represent the invoices, payments and the matches between them.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, date, timezone
from enum import Enum
import uuid


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, Enum):
    """Invoice status in the reconciliation workflow."""
    PENDING = "pending"
    PARTIALLY_MATCHED = "partially_matched"
    MATCHED = "matched"
    DISPUTED = "disputed"
    WRITTEN_OFF = "written_off"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_MATCHED = "partially_matched"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DIRECT_DEBIT = "direct_debit"
    CASH = "cash"
    ACH = "ach"
    OTHER = "other"


class MatchType(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    OVERPAYMENT = "overpayment"
    UNDERPAYMENT = "underpayment"
    REFERENCE_MATCH = "reference_match"


class DiscrepancyType(str, Enum):
    AMOUNT_MISMATCH = "amount_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"
    DATE_VARIANCE = "date_variance"
    DUPLICATE_PAYMENT = "duplicate_payment"
    MISSING_INVOICE = "missing_invoice"
    MISSING_PAYMENT = "missing_payment"


class ReconciliationStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESOLVED = "resolved"


class MatchedBy(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ExceptionType(str, Enum):
    """Types of exceptions that require manual follow-up."""
    UNMATCHED_INVOICE = "unmatched_invoice"
    UNMATCHED_PAYMENT = "unmatched_payment"
    AMOUNT_DISCREPANCY = "amount_discrepancy"
    DUPLICATE_ENTRY = "duplicate_entry"
    DATE_VARIANCE = "date_variance"
    VENDOR_MISMATCH = "vendor_mismatch"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExceptionStatus(str, Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class RemittanceStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REVIEW_REQUIRED = "review_required"


class RemittanceJobStatus(str, Enum):
    PAID = "paid"
    PARTIAL = "partial"
    DISPUTED = "disputed"
    PENDING = "pending"


# ============== Invoice Models ==============

class LineItem(BaseModel):
    """Individual line item on an invoice."""
    id: str = Field(..., description="Line item ID")
    description: str = Field(default="", description="Item description")
    quantity: float = Field(default=1, description="Quantity")
    unit_price: float = Field(..., description="Price per unit")
    amount: float = Field(..., description="Line total amount")


class Invoice(BaseModel):
    """Invoice issued by a vendor and awaiting payment."""
    id: str = Field(default_factory=new_id, description="Unique invoice ID")
    organization_id: str = Field(..., description="Owning organization")
    invoice_number: str = Field(..., description="Invoice number (free text, not unique)")
    vendor_name: str = Field(..., description="Vendor/Supplier name")
    vendor_id: str = Field(..., description="Vendor identifier")
    amount: float = Field(..., gt=0, description="Total invoice amount")
    currency: str = Field(default="USD", min_length=3, max_length=3, description="ISO 4217 code")
    issue_date: date = Field(..., description="Invoice date")
    due_date: date = Field(..., description="Payment due date")
    description: str = Field(default="", description="Free text description")
    line_items: List[LineItem] = Field(default_factory=list, description="Invoice line items")
    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING, description="Current status")
    reconciliation_id: Optional[str] = Field(default=None, description="Committed reconciliation")
    version: int = Field(default=1, description="Incremented on every update")
    created_at: datetime = Field(default_factory=utcnow, description="Record creation time")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update time")

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if isinstance(v, str) else v


class Payment(BaseModel):
    """Incoming payment received from a payer."""
    id: str = Field(default_factory=new_id, description="Unique payment ID")
    organization_id: str = Field(..., description="Owning organization")
    payment_reference: str = Field(..., description="Payment reference")
    payer_name: str = Field(..., description="Payer name")
    payer_id: str = Field(..., description="Payer identifier")
    amount: float = Field(..., gt=0, description="Amount received")
    currency: str = Field(default="USD", min_length=3, max_length=3, description="ISO 4217 code")
    payment_date: date = Field(..., description="Date the payment was made")
    payment_method: PaymentMethod = Field(default=PaymentMethod.OTHER, description="Payment method")
    bank_reference: Optional[str] = Field(default=None, description="Bank reference")
    description: str = Field(default="", description="Remittance text from the bank")
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, description="Current status")
    reconciliation_id: Optional[str] = Field(default=None, description="Committed reconciliation")
    version: int = Field(default=1, description="Incremented on every update")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if isinstance(v, str) else v


# ============== Reconciliation Models ==============

class Reconciliation(BaseModel):
    """A committed pairing of one invoice to one payment."""
    id: str = Field(default_factory=new_id)
    organization_id: str
    invoice_id: str
    payment_id: str
    matched_amount: float = Field(..., description="min(invoice amount, payment amount)")
    match_type: MatchType
    match_confidence: float = Field(..., ge=0, le=1)
    discrepancy_amount: float = Field(..., description="payment amount - invoice amount")
    discrepancy_type: Optional[DiscrepancyType] = None
    status: ReconciliationStatus
    notes: str = ""
    matched_by: MatchedBy
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReconciliationSuggestion(BaseModel):
    """Candidate pairing scored by the matcher. Never persisted."""
    invoice_id: str
    payment_id: str
    confidence: float = Field(..., ge=0, le=1)
    match_reasons: List[str] = Field(default_factory=list)
    discrepancy_amount: float


class ExceptionRecord(BaseModel):
    """A flagged discrepancy or unmatched item requiring follow-up."""
    id: str = Field(default_factory=new_id)
    organization_id: str
    type: ExceptionType
    severity: Severity
    invoice_id: Optional[str] = None
    payment_id: Optional[str] = None
    reconciliation_id: Optional[str] = None
    description: str
    suggested_action: str
    status: ExceptionStatus = ExceptionStatus.OPEN
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============== Remittance Models ==============

class RemittanceJob(BaseModel):
    """A work order paid by a remittance."""
    id: str = Field(default_factory=new_id)
    work_order_number: str
    vehicle_info: Optional[str] = None
    service_date: str = ""
    description: str = ""
    labor_amount: Optional[float] = None
    parts_amount: Optional[float] = None
    total_amount: float
    status: RemittanceJobStatus = RemittanceJobStatus.PAID


class RemittanceDeduction(BaseModel):
    description: str
    amount: float


class Remittance(BaseModel):
    """Remittance advice covering many work orders in one payment."""
    id: str = Field(default_factory=new_id)
    organization_id: str
    remittance_number: str
    fleet_company_name: str
    fleet_company_id: Optional[str] = None
    shop_name: Optional[str] = None
    shop_id: Optional[str] = None
    remittance_date: str
    payment_date: Optional[str] = None
    total_amount: float
    currency: str = "USD"
    payment_method: Optional[PaymentMethod] = None
    check_number: Optional[str] = None
    bank_reference: Optional[str] = None
    jobs: List[RemittanceJob] = Field(default_factory=list)
    deductions: List[RemittanceDeduction] = Field(default_factory=list)
    notes: Optional[str] = None
    source_file_key: Optional[str] = None
    processing_job_id: Optional[str] = None
    status: RemittanceStatus = RemittanceStatus.COMPLETED
    confidence: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============== Dashboard ==============

class DashboardStats(BaseModel):
    """Aggregate snapshot of one organization's ledger."""
    total_invoices: int = 0
    total_payments: int = 0
    total_reconciled: int = 0
    total_exceptions: int = 0
    total_invoice_amount: float = 0.0
    total_payment_amount: float = 0.0
    reconciled_amount: float = 0.0
    unreconciled_invoice_amount: float = 0.0
    unreconciled_payment_amount: float = 0.0
    match_rate: float = 0.0
    avg_processing_time: float = Field(default=0.0, description="Seconds per completed job")
