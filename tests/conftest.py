"""
Shared fixtures for the reconflow test suite.

Run with: pytest tests/ -v
"""
import asyncio
import time
from datetime import date
from typing import List, Optional

import pytest

from reconflow.database.ledger_db import LedgerDatabase
from reconflow.models.extraction import (
    DocumentClassification,
    DocumentType,
    ExtractedInvoice,
    ExtractedPayment,
    ExtractedRemittance,
    ExtractedRemittanceJob,
    ProcessorContext,
    ProcessingResult,
)
from reconflow.models.ledger import Invoice, Payment
from reconflow.processors.base import BaseProcessor, ProcessorConfig, ProcessorRegistry
from reconflow.storage.object_storage import LocalObjectStorage
from reconflow.workflows.engine import WorkflowEngine

ORG = "org-test"


class StubProcessor(BaseProcessor):
    """Processor returning canned extraction results, optionally failing first."""

    def __init__(
        self,
        processor_id: str = "stub",
        document_type: DocumentType = DocumentType.INVOICE,
        invoice: Optional[ExtractedInvoice] = None,
        payment: Optional[ExtractedPayment] = None,
        remittance: Optional[ExtractedRemittance] = None,
        failures: int = 0,
        delay: float = 0.0,
    ):
        self.config = ProcessorConfig(
            id=processor_id,
            name="Stub",
            description="Canned results for tests",
            supported_types=[DocumentType.INVOICE, DocumentType.PAYMENT, DocumentType.REMITTANCE],
        )
        self.document_type = document_type
        self.invoice = invoice or ExtractedInvoice(
            invoice_number="INV-001",
            vendor_name="Acme Corp",
            vendor_id="V-1",
            amount=1500.0,
            currency="USD",
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
            confidence=0.9,
        )
        self.payment = payment or ExtractedPayment(
            payment_reference="PAY-001",
            payer_name="Acme Corp",
            amount=1500.0,
            currency="USD",
            payment_date=date(2024, 1, 20),
            description="Payment for INV-001",
            confidence=0.8,
        )
        self.remittance = remittance or ExtractedRemittance(
            remittance_number="REM-100",
            fleet_company_name="Fleet Co",
            remittance_date="2024-02-01",
            total_amount=750.0,
            jobs=[
                ExtractedRemittanceJob(work_order_number="WO-1", total_amount=500.0),
                ExtractedRemittanceJob(work_order_number="WO-2", total_amount=250.0),
            ],
            confidence=0.7,
        )
        self.failures = failures
        self.delay = delay
        self.calls: List[str] = []

    async def classify_document(self, context: ProcessorContext) -> DocumentClassification:
        self.calls.append("classify")
        hinted = self.hinted_classification(context)
        if hinted:
            return hinted
        return DocumentClassification(type=self.document_type, confidence=0.95, reasoning="stub")

    async def _extract(self, kind: str, data) -> ProcessingResult:
        start_time = time.monotonic()
        self.calls.append(kind)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            return self.create_result(False, start_time, error="Simulated extraction failure")
        return self.create_result(True, start_time, data=data)

    async def extract_invoice(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract("invoice", self.invoice)

    async def extract_payment(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract("payment", self.payment)

    async def extract_remittance(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract("remittance", self.remittance)


@pytest.fixture
def ledger(tmp_path):
    return LedgerDatabase(str(tmp_path / "ledger.db"))


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "uploads"))


@pytest.fixture
def stub_processor():
    return StubProcessor()


@pytest.fixture
def registry(stub_processor):
    registry = ProcessorRegistry()
    registry.register(stub_processor)
    return registry


@pytest.fixture
def workflow_engine(ledger, storage, registry):
    return WorkflowEngine(ledger, storage, registry)


def make_invoice(**overrides) -> Invoice:
    fields = {
        "organization_id": ORG,
        "invoice_number": "INV-001",
        "vendor_name": "Acme Corp",
        "vendor_id": "V-1",
        "amount": 1500.0,
        "currency": "USD",
        "issue_date": date(2024, 1, 1),
        "due_date": date(2024, 1, 31),
    }
    fields.update(overrides)
    return Invoice(**fields)


def make_payment(**overrides) -> Payment:
    fields = {
        "organization_id": ORG,
        "payment_reference": "PAY-001",
        "payer_name": "Someone Else",
        "payer_id": "P-1",
        "amount": 1500.0,
        "currency": "USD",
        "payment_date": date(2024, 1, 20),
        "description": "Bank transfer",
    }
    fields.update(overrides)
    return Payment(**fields)
