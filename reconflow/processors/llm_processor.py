"""
LLM-backed document processor.

Uses the document text from the same PDF/OCR pipeline as the pattern
processor and asks an OpenAI-compatible chat model (Ollama by default)
to classify the document and return its fields as JSON.
"""
import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..models.extraction import (
    DocumentClassification,
    DocumentType,
    ExtractedInvoice,
    ExtractedPayment,
    ExtractedRemittance,
    ProcessingResult,
    ProcessorContext,
)
from ..utils.config import get_settings
from .base import BaseProcessor, ProcessorConfig
from .text_extraction import extract_text

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """Classify this document. What type is it?

- "remittance" - A remittance advice showing payment details for multiple work orders/jobs
- "invoice" - A single invoice requesting payment
- "payment" - A payment record or receipt
- "statement" - A bank or account statement
- "unknown" - Cannot determine

Respond with JSON only:
{{"type": "remittance" | "invoice" | "payment" | "statement" | "unknown", "confidence": 0.0-1.0, "reasoning": "brief explanation"}}

Document:
{text}"""

EXTRACT_PROMPTS = {
    "invoice": """Extract invoice information from the following text and return as JSON.

Required fields:
- invoice_number: Invoice number/ID
- vendor_name: Company/vendor name
- amount: Total amount as number
- currency: ISO 4217 currency code
- issue_date: Date in YYYY-MM-DD format

Optional fields:
- vendor_id, vendor_address, description
- due_date: Payment due date in YYYY-MM-DD format
- line_items: list of {{description, quantity, unit_price, amount}}
- subtotal, tax_amount
- confidence: 0.0-1.0

Text:
{text}

Return only valid JSON, no explanation.""",
    "payment": """Extract payment information from the following text and return as JSON.

Required fields:
- payment_reference: Payment reference/ID
- payer_name: Who made the payment
- amount: Amount paid as number
- currency: ISO 4217 currency code
- payment_date: Date in YYYY-MM-DD format

Optional fields:
- payer_id, bank_reference, description (include any invoice numbers referenced)
- payment_method: one of bank_transfer, check, credit_card, direct_debit, cash, other
- confidence: 0.0-1.0

Text:
{text}

Return only valid JSON, no explanation.""",
    "remittance": """Extract remittance advice information from the following text and return as JSON.

Required fields:
- remittance_number, fleet_company_name
- remittance_date: YYYY-MM-DD
- total_amount: number
- currency: ISO 4217 currency code
- jobs: list of {{work_order_number, vehicle_info, service_date, description, labor_amount, parts_amount, total_amount, status}}

Optional fields:
- fleet_company_id, shop_name, shop_id, payment_date, check_number, bank_reference, notes
- payment_method: one of bank_transfer, check, credit_card, direct_debit, ach, other
- deductions: list of {{description, amount}}
- confidence: 0.0-1.0

Text:
{text}

Return only valid JSON, no explanation.""",
}

EXTRACTED_MODELS: Dict[str, Type[BaseModel]] = {
    "invoice": ExtractedInvoice,
    "payment": ExtractedPayment,
    "remittance": ExtractedRemittance,
}


class LLMProcessor(BaseProcessor):
    """Chat-model extraction over document text."""

    def __init__(self, llm_client=None, model: Optional[str] = None):
        settings = get_settings()
        self.config = ProcessorConfig(
            id="llm-extract",
            name="LLM Extraction",
            description="Document text structured by an OpenAI-compatible chat model",
            supported_types=[
                DocumentType.INVOICE, DocumentType.PAYMENT,
                DocumentType.STATEMENT, DocumentType.REMITTANCE,
            ],
            options={"model": model or settings.LLM_MODEL},
        )
        self.llm_client = llm_client
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE

    async def _complete_json(self, prompt: str) -> Dict[str, Any]:
        """Send a prompt and parse the first JSON object in the reply."""
        response = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
        )
        content = response.choices[0].message.content or ""
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            raise ValueError("Model reply contained no JSON object")
        return json.loads(match.group(0))

    async def _document_text(self, context: ProcessorContext) -> str:
        extraction = await asyncio.to_thread(
            extract_text, context.file_bytes, context.mime_type, context.file_name
        )
        return extraction.text

    async def classify_document(self, context: ProcessorContext) -> DocumentClassification:
        hinted = self.hinted_classification(context)
        if hinted:
            return hinted

        try:
            text = await self._document_text(context)
            parsed = await self._complete_json(CLASSIFY_PROMPT.format(text=text[:3000]))
            return DocumentClassification(
                type=DocumentType(parsed.get("type", "unknown")),
                confidence=float(parsed.get("confidence", 0.5)),
                reasoning=parsed.get("reasoning"),
            )
        except Exception as e:
            logger.warning(f"Classification failed: {e}")
            return DocumentClassification(type=DocumentType.UNKNOWN, confidence=0.0, reasoning=str(e))

    async def _extract(self, context: ProcessorContext, document_type: str) -> ProcessingResult:
        start_time = time.monotonic()
        try:
            text = await self._document_text(context)
            if not text.strip():
                return self.create_result(False, start_time, error="No text could be read from document")

            parsed = await self._complete_json(EXTRACT_PROMPTS[document_type].format(text=text[:6000]))
            parsed["document_type"] = document_type
            parsed.setdefault("raw_text", text[:1000])
            data = EXTRACTED_MODELS[document_type].model_validate(parsed)
        except PydanticValidationError as e:
            return self.create_result(False, start_time, error=f"Model returned invalid {document_type} data: {e}")
        except Exception as e:
            return self.create_result(False, start_time, error=f"LLM extraction failed: {e}")

        return self.create_result(True, start_time, data=data, metadata={"model": self.model})

    async def extract_invoice(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract(context, "invoice")

    async def extract_payment(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract(context, "payment")

    async def extract_remittance(self, context: ProcessorContext) -> ProcessingResult:
        return await self._extract(context, "remittance")
