"""
Unit tests for the document processors.

Run with: pytest tests/ -v
"""
import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from reconflow.models.extraction import DocumentType, ProcessorContext
from reconflow.models.ledger import PaymentMethod
from reconflow.processors import LLMProcessor, PatternProcessor, ProcessorRegistry, create_registry
from reconflow.processors.text_extraction import extract_text, normalize_text

INVOICE_TEXT = """Vendor: Acme Supplies
Invoice Number: INV-2024-001
Vendor ID: V-100
Invoice Date: 2024-01-15
Due Date: 2024-02-14
Subtotal: $1,000.00
Tax: $80.00
Total Due: $1,080.00
"""

PAYMENT_TEXT = """Payment Receipt
Payment Reference: PAY-7788
Received From: Acme Corp
Payment Date: 2024-01-20
Amount Paid: $1,500.00
Method: Bank Transfer
Memo: Settles INV-2024-001
"""

REMITTANCE_TEXT = """Remittance Advice
Remittance Number: RA-5501
Fleet Company: Metro Fleet
Shop: Downtown Auto
Remittance Date: 2024-03-01
Check #: 10234
WO-1001 Brake service 02/10/2024 $450.00
WO-1002 Oil change 02/12/2024 $80.00
Less: Early pay discount $30.00
Total Paid: $500.00
"""


def text_context(text: str, expected_type=None) -> ProcessorContext:
    return ProcessorContext(
        file_bytes=text.encode("utf-8"),
        file_name="document.txt",
        mime_type="text/plain",
        expected_type=expected_type,
    )


def llm_reply(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestTextExtraction:

    def test_plain_text_is_decoded(self):
        extraction = extract_text(b"Invoice Number: 42", "text/plain")
        assert extraction.text == "Invoice Number: 42"
        assert extraction.method == "text"
        assert extraction.confidence == 1.0

    def test_unsupported_format(self):
        extraction = extract_text(b"PK\x03\x04", "application/zip", "archive.zip")
        assert extraction.text == ""
        assert extraction.errors == ["Unsupported file format: application/zip"]

    def test_normalize_spaced_characters(self):
        """Text with a space between every character keeps only the real word gaps."""
        assert normalize_text("T o t a l  D u e") == "Total Due"
        assert normalize_text("Total Due") == "Total Due"


class TestPatternProcessor:
    """Tests for regex extraction over document text."""

    @pytest.fixture
    def processor(self):
        return PatternProcessor()

    @pytest.mark.asyncio
    async def test_classify_by_keywords(self, processor):
        invoice = await processor.classify_document(text_context(INVOICE_TEXT))
        payment = await processor.classify_document(text_context(PAYMENT_TEXT))
        remittance = await processor.classify_document(text_context(REMITTANCE_TEXT))

        assert invoice.type == DocumentType.INVOICE
        assert payment.type == DocumentType.PAYMENT
        assert remittance.type == DocumentType.REMITTANCE
        assert remittance.confidence == 0.9

    @pytest.mark.asyncio
    async def test_classify_uses_hint(self, processor):
        result = await processor.classify_document(text_context(INVOICE_TEXT, DocumentType.PAYMENT))
        assert result.type == DocumentType.PAYMENT
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_classify_without_text(self, processor):
        result = await processor.classify_document(text_context("   "))
        assert result.type == DocumentType.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_extract_invoice(self, processor):
        result = await processor.extract_invoice(text_context(INVOICE_TEXT))

        assert result.success
        assert result.processor_id == "pattern-ocr"
        invoice = result.data
        assert invoice.invoice_number == "INV-2024-001"
        assert invoice.vendor_name == "Acme Supplies"
        assert invoice.vendor_id == "V-100"
        assert invoice.amount == 1080.0
        assert invoice.subtotal == 1000.0
        assert invoice.tax_amount == 80.0
        assert invoice.currency == "USD"
        assert invoice.issue_date == date(2024, 1, 15)
        assert invoice.due_date == date(2024, 2, 14)
        assert invoice.confidence == 1.0

    @pytest.mark.asyncio
    async def test_extract_payment(self, processor):
        result = await processor.extract_payment(text_context(PAYMENT_TEXT))

        payment = result.data
        assert payment.payment_reference == "PAY-7788"
        assert payment.payer_name == "Acme Corp"
        assert payment.amount == 1500.0
        assert payment.payment_date == date(2024, 1, 20)
        assert payment.payment_method == PaymentMethod.BANK_TRANSFER
        assert payment.description == "Settles INV-2024-001"

    @pytest.mark.asyncio
    async def test_extract_remittance(self, processor):
        result = await processor.extract_remittance(text_context(REMITTANCE_TEXT))

        remittance = result.data
        assert remittance.remittance_number == "RA-5501"
        assert remittance.fleet_company_name == "Metro Fleet"
        assert remittance.shop_name == "Downtown Auto"
        assert remittance.remittance_date == "2024-03-01"
        assert remittance.check_number == "10234"
        assert remittance.payment_method == PaymentMethod.CHECK
        assert remittance.total_amount == 500.0
        assert [(job.work_order_number, job.total_amount) for job in remittance.jobs] == [
            ("1001", 450.0), ("1002", 80.0)
        ]
        assert remittance.jobs[0].service_date == "2024-02-10"
        assert remittance.deductions[0].amount == 30.0

    @pytest.mark.asyncio
    async def test_extraction_without_text_fails(self, processor):
        result = await processor.extract_invoice(text_context(""))

        assert not result.success
        assert result.data is None
        assert result.error == "No text could be read from document"

    @pytest.mark.asyncio
    async def test_process_dispatches_on_classification(self, processor):
        result = await processor.process(text_context(PAYMENT_TEXT))

        assert result.success
        assert result.document_type == DocumentType.PAYMENT
        assert result.data.payment_reference == "PAY-7788"

    @pytest.mark.asyncio
    async def test_process_unknown_document(self, processor):
        result = await processor.process(text_context("hello world"))

        assert not result.success
        assert result.error == "Unsupported document type: unknown"


class TestLLMProcessor:
    """Tests for chat-model extraction with a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        return client

    @pytest.fixture
    def processor(self, client):
        return LLMProcessor(client, model="test-model")

    @pytest.mark.asyncio
    async def test_classify(self, processor, client):
        client.chat.completions.create.return_value = llm_reply(
            'Sure: {"type": "remittance", "confidence": 0.85, "reasoning": "lists work orders"}'
        )

        result = await processor.classify_document(text_context(REMITTANCE_TEXT))

        assert result.type == DocumentType.REMITTANCE
        assert result.confidence == 0.85
        assert client.chat.completions.create.call_args.kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_classify_failure_is_unknown(self, processor, client):
        client.chat.completions.create.side_effect = RuntimeError("connection refused")

        result = await processor.classify_document(text_context(INVOICE_TEXT))

        assert result.type == DocumentType.UNKNOWN
        assert result.reasoning == "connection refused"

    @pytest.mark.asyncio
    async def test_extract_invoice(self, processor, client):
        client.chat.completions.create.return_value = llm_reply(json.dumps({
            "invoice_number": "INV-2024-001",
            "vendor_name": "Acme Supplies",
            "amount": 1080.0,
            "currency": "USD",
            "issue_date": "2024-01-15",
            "confidence": 0.9,
        }))

        result = await processor.extract_invoice(text_context(INVOICE_TEXT))

        assert result.success
        assert result.processor_id == "llm-extract"
        assert result.data.invoice_number == "INV-2024-001"
        assert result.data.issue_date == date(2024, 1, 15)
        assert result.metadata == {"model": "test-model"}

    @pytest.mark.asyncio
    async def test_reply_without_json(self, processor, client):
        client.chat.completions.create.return_value = llm_reply("I cannot read this document.")

        result = await processor.extract_payment(text_context(PAYMENT_TEXT))

        assert not result.success
        assert result.error == "LLM extraction failed: Model reply contained no JSON object"

    @pytest.mark.asyncio
    async def test_invalid_fields(self, processor, client):
        client.chat.completions.create.return_value = llm_reply('{"payment_reference": "P-1", "amount": "lots"}')

        result = await processor.extract_payment(text_context(PAYMENT_TEXT))

        assert not result.success
        assert result.error.startswith("Model returned invalid payment data")


class TestProcessorRegistry:

    def test_pattern_processor_always_registered(self):
        registry = create_registry(use_llm=False)
        assert [p.config.id for p in registry.get_all()] == ["pattern-ocr"]

    def test_llm_processor_registered_with_client(self):
        registry = create_registry(use_llm=True, llm_client=MagicMock())

        assert registry.get("llm-extract") is not None
        assert registry.first().config.id == "pattern-ocr"
        assert len(registry.get_by_type(DocumentType.STATEMENT)) == 1

    def test_unknown_processor(self):
        assert ProcessorRegistry().get("nope") is None
        assert ProcessorRegistry().first() is None
