"""
Structured data extracted from documents by the processors.

Extracted data is a tagged union: every variant carries a ``document_type``
discriminator, set from the classification, that the extract, validate and
save steps dispatch on.
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .ledger import PaymentMethod, RemittanceDeduction, RemittanceJobStatus


class DocumentType(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    STATEMENT = "statement"
    REMITTANCE = "remittance"
    UNKNOWN = "unknown"


class ExtractedLineItem(BaseModel):
    description: str = ""
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    amount: float


class ExtractedInvoice(BaseModel):
    """Invoice fields read from a document."""
    document_type: Literal["invoice"] = "invoice"
    invoice_number: str = ""
    vendor_name: str = ""
    vendor_id: Optional[str] = None
    vendor_address: Optional[str] = None
    amount: float = 0.0
    currency: str = "USD"
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    description: Optional[str] = None
    line_items: List[ExtractedLineItem] = Field(default_factory=list)
    tax_amount: Optional[float] = None
    subtotal: Optional[float] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    raw_text: Optional[str] = None


class ExtractedPayment(BaseModel):
    """Payment fields read from a document."""
    document_type: Literal["payment"] = "payment"
    payment_reference: str = ""
    payer_name: str = ""
    payer_id: Optional[str] = None
    amount: float = 0.0
    currency: str = "USD"
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    bank_reference: Optional[str] = None
    description: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    raw_text: Optional[str] = None


class ExtractedRemittanceJob(BaseModel):
    work_order_number: str
    vehicle_info: Optional[str] = None
    service_date: str = ""
    description: str = ""
    labor_amount: Optional[float] = None
    parts_amount: Optional[float] = None
    total_amount: float
    status: Optional[RemittanceJobStatus] = None


class ExtractedRemittance(BaseModel):
    """Remittance advice fields read from a document."""
    document_type: Literal["remittance"] = "remittance"
    remittance_number: str = ""
    fleet_company_name: str = ""
    fleet_company_id: Optional[str] = None
    shop_name: Optional[str] = None
    shop_id: Optional[str] = None
    remittance_date: str = ""
    payment_date: Optional[str] = None
    total_amount: float = 0.0
    currency: str = "USD"
    payment_method: Optional[PaymentMethod] = None
    check_number: Optional[str] = None
    bank_reference: Optional[str] = None
    jobs: List[ExtractedRemittanceJob] = Field(default_factory=list)
    deductions: List[RemittanceDeduction] = Field(default_factory=list)
    notes: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    raw_text: Optional[str] = None


ExtractedData = Annotated[
    Union[ExtractedInvoice, ExtractedPayment, ExtractedRemittance],
    Field(discriminator="document_type"),
]

extracted_data_adapter = TypeAdapter(ExtractedData)


class DocumentClassification(BaseModel):
    type: DocumentType
    confidence: float = Field(default=0.0, ge=0, le=1)
    reasoning: Optional[str] = None


@dataclass
class ProcessorContext:
    """Everything a processor needs to read one document."""
    file_bytes: bytes
    file_name: str = "document.pdf"
    mime_type: str = "application/pdf"
    file_url: str = ""
    expected_type: Optional[DocumentType] = None
    vendor_hint: Optional[str] = None


@dataclass
class ProcessingResult:
    """Outcome of one processor call: extracted data or an error."""
    success: bool
    processor_id: str
    processing_time_ms: int
    data: Optional[Any] = None
    error: Optional[str] = None
    document_type: Optional[DocumentType] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
