"""
Pattern-based document processor.

Reads the document text (PDF text layer, OCR for images and scanned PDFs)
and pulls invoice, payment and remittance fields out of it with regular
expressions. Works offline; no model calls.
"""
import asyncio
import re
import time
from datetime import datetime, date
from typing import Dict, Optional

from ..models.extraction import (
    DocumentClassification,
    DocumentType,
    ExtractedInvoice,
    ExtractedPayment,
    ExtractedRemittance,
    ExtractedRemittanceJob,
    ProcessingResult,
    ProcessorContext,
)
from ..models.ledger import PaymentMethod, RemittanceDeduction
from .base import BaseProcessor, ProcessorConfig
from .text_extraction import TextExtraction, extract_text

DATE = (
    r"(\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{4}[-/]\d{1,2}[-/]\d{1,2}|"
    r"\w+\s+\d{1,2},?\s+\d{4}|\d{1,2}\s+\w+\s+\d{4})"
)
MONEY = r"[$€£]?\s*([\d,]+\.?\d{0,2})"

CLASSIFICATION_KEYWORDS = {
    DocumentType.REMITTANCE: ["remittance advice", "remittance", "work order", "wo#"],
    DocumentType.INVOICE: ["invoice", "bill to", "due date", "amount due"],
    DocumentType.PAYMENT: ["payment receipt", "payment reference", "amount paid", "amount received", "receipt"],
}

PAYMENT_METHOD_KEYWORDS = [
    ("bank transfer", PaymentMethod.BANK_TRANSFER),
    ("wire", PaymentMethod.BANK_TRANSFER),
    ("ach", PaymentMethod.ACH),
    ("direct debit", PaymentMethod.DIRECT_DEBIT),
    ("credit card", PaymentMethod.CREDIT_CARD),
    ("check", PaymentMethod.CHECK),
    ("cheque", PaymentMethod.CHECK),
    ("cash", PaymentMethod.CASH),
]


class PatternProcessor(BaseProcessor):
    """
    Regex field extraction over OCR/PDF text.

    Confidence reflects how many of the required fields were found,
    scaled down for OCR'd text.
    """

    def __init__(self):
        self.config = ProcessorConfig(
            id="pattern-ocr",
            name="Pattern OCR",
            description="PDF text and Tesseract OCR with regular-expression field extraction",
            supported_types=[DocumentType.INVOICE, DocumentType.PAYMENT, DocumentType.REMITTANCE],
        )
        self._patterns = self._compile_patterns()

    def _compile_patterns(self) -> Dict[str, Dict[str, re.Pattern]]:
        """Compile regex patterns per document type."""
        flags = re.IGNORECASE | re.MULTILINE
        return {
            "invoice": {
                "invoice_number": re.compile(
                    r"invoice\s*(?:#|no\.?|number)\s*:?\s*([A-Z0-9][-A-Z0-9/]{2,30})", flags
                ),
                "vendor_name": re.compile(r"^\s*(?:vendor|bill\s+from|from|supplier)\s*:\s*(.+?)\s*$", flags),
                "company_line": re.compile(
                    r"^([A-Z][A-Za-z\s&,]+(?:Inc\.?|LLC|LLP|Ltd\.?|Corp\.?|Corporation|Company|Co\.?|GmbH|PLC))",
                    re.MULTILINE
                ),
                "vendor_id": re.compile(r"vendor\s*(?:id|#|no\.?)\s*:?\s*([A-Z0-9][-A-Z0-9]{1,30})", flags),
                "issue_date": re.compile(
                    r"(?:invoice\s+date|issue\s+date|date\s+of\s+issue|^\s*date)\s*:?\s*" + DATE, flags
                ),
                "due_date": re.compile(r"(?:due\s*date|payment\s*due|pay\s*by)\s*:?\s*" + DATE, flags),
                "amount": re.compile(
                    r"(?<![a-z])(?:grand\s*total|total(?:\s+amount)?(?:\s+due)?|amount\s*due|balance\s*due)"
                    r"\s*:?\s*" + MONEY, flags
                ),
                "subtotal": re.compile(r"(?:subtotal|sub-total|sub\s+total)\s*:?\s*" + MONEY, flags),
                "tax": re.compile(r"(?<![a-z])(?:tax|vat|gst|sales\s*tax)\s*:?\s*" + MONEY, flags),
                "description": re.compile(r"^\s*(?:description|for)\s*:\s*(.+?)\s*$", flags),
            },
            "payment": {
                "payment_reference": re.compile(
                    r"(?:payment\s*(?:reference|ref\.?|#|no\.?|id)|\breference|\bref\b\.?)\s*(?:#|no\.?)?\s*:?\s*"
                    r"([A-Z0-9][-A-Z0-9/]{2,30})", flags
                ),
                "payer_name": re.compile(
                    r"^\s*(?:payer|received\s+from|paid\s+by|from)\s*:\s*(.+?)\s*$", flags
                ),
                "payer_id": re.compile(r"payer\s*(?:id|#|no\.?)\s*:?\s*([A-Z0-9][-A-Z0-9]{1,30})", flags),
                "amount": re.compile(
                    r"(?:amount(?:\s+paid|\s+received)?|payment\s+amount|total(?:\s+paid)?)\s*:?\s*" + MONEY,
                    flags
                ),
                "payment_date": re.compile(
                    r"(?:payment\s+date|date\s+paid|paid\s+on|^\s*date)\s*:?\s*" + DATE, flags
                ),
                "bank_reference": re.compile(
                    r"(?:bank\s+ref(?:erence)?|transaction\s+id)\s*:?\s*([A-Z0-9][-A-Z0-9]{2,40})", flags
                ),
                "description": re.compile(r"^\s*(?:description|memo|for)\s*:\s*(.+?)\s*$", flags),
                "method": re.compile(r"(?:payment\s+)?method\s*:\s*(.+?)\s*$", flags),
            },
            "remittance": {
                "remittance_number": re.compile(
                    r"remittance\s*(?:advice\s*)?(?:#|no\.?|number)\s*:?\s*([A-Z0-9][-A-Z0-9/]{2,30})", flags
                ),
                "fleet_company_name": re.compile(
                    r"^\s*(?:fleet(?:\s+company)?|payer|from)\s*:\s*(.+?)\s*$", flags
                ),
                "shop_name": re.compile(r"^\s*(?:shop|payee|to)\s*:\s*(.+?)\s*$", flags),
                "remittance_date": re.compile(r"(?:remittance\s+date|^\s*date)\s*:?\s*" + DATE, flags),
                "payment_date": re.compile(r"payment\s+date\s*:?\s*" + DATE, flags),
                "check_number": re.compile(r"(?:check|cheque)\s*(?:#|no\.?|number)\s*:?\s*([A-Z0-9]+)", flags),
                "total_amount": re.compile(
                    r"(?<![a-z])(?:total(?:\s+paid|\s+amount)?|amount\s+paid)\s*:?\s*" + MONEY, flags
                ),
                "job_line": re.compile(
                    r"^\s*(?:WO|work\s*order)\s*[#:-]?\s*([A-Z0-9][-A-Z0-9]*)\s+(.*?)\s+[$€£]?([\d,]+\.\d{2})\s*$",
                    flags
                ),
                "deduction_line": re.compile(
                    r"^\s*(?:deduction|less)\s*:?\s*(.+?)\s+-?[$€£]?([\d,]+\.\d{2})\s*$", flags
                ),
            },
            "currency": re.compile(r"\b(USD|EUR|GBP|MYR|SGD|CAD|AUD)\b|([$€£])", re.IGNORECASE),
            "date": re.compile(DATE),
        }

    async def _read_text(self, context: ProcessorContext) -> TextExtraction:
        return await asyncio.to_thread(extract_text, context.file_bytes, context.mime_type, context.file_name)

    async def classify_document(self, context: ProcessorContext) -> DocumentClassification:
        """Classify from the caller's hint, otherwise by keyword counts."""
        hinted = self.hinted_classification(context)
        if hinted:
            return hinted

        extraction = await self._read_text(context)
        text = extraction.text.lower()
        if not text.strip():
            return DocumentClassification(type=DocumentType.UNKNOWN, confidence=0.0,
                                          reasoning="No text could be read from document")

        scores = {
            doc_type: sum(text.count(keyword) for keyword in keywords)
            for doc_type, keywords in CLASSIFICATION_KEYWORDS.items()
        }
        best_type = max(scores, key=scores.get)
        best_score = scores[best_type]

        if best_score == 0:
            return DocumentClassification(type=DocumentType.UNKNOWN, confidence=0.0,
                                          reasoning="No document keywords found")

        return DocumentClassification(
            type=best_type,
            confidence=round(min(0.5 + 0.1 * best_score, 0.9) * extraction.confidence, 2),
            reasoning=f"Matched {best_score} {best_type.value} keyword(s)",
        )

    async def extract_invoice(self, context: ProcessorContext) -> ProcessingResult:
        start_time = time.monotonic()
        extraction = await self._read_text(context)
        if not extraction.text.strip():
            return self.create_result(False, start_time, error=self._no_text_error(extraction))

        text = extraction.text
        fields = self._search(self._patterns["invoice"], text)

        vendor_name = fields.get("vendor_name") or fields.get("company_line") or ""
        amount = self._parse_amount(fields.get("amount"))
        tax_amount = self._parse_amount(fields.get("tax")) if fields.get("tax") else None
        subtotal = self._parse_amount(fields.get("subtotal")) if fields.get("subtotal") else None
        if subtotal is None and amount and tax_amount is not None:
            subtotal = round(amount - tax_amount, 2)

        required = [fields.get("invoice_number"), vendor_name, amount, fields.get("issue_date")]
        confidence = sum(1 for value in required if value) / len(required)

        invoice = ExtractedInvoice(
            invoice_number=fields.get("invoice_number", ""),
            vendor_name=vendor_name.strip(),
            vendor_id=fields.get("vendor_id"),
            amount=amount,
            currency=self._parse_currency(text),
            issue_date=self._parse_date(fields.get("issue_date")),
            due_date=self._parse_date(fields.get("due_date")),
            description=fields.get("description"),
            tax_amount=tax_amount,
            subtotal=subtotal,
            confidence=round(confidence * extraction.confidence, 2),
            raw_text=text[:1000],
        )
        return self.create_result(True, start_time, data=invoice, metadata={"method": extraction.method})

    async def extract_payment(self, context: ProcessorContext) -> ProcessingResult:
        start_time = time.monotonic()
        extraction = await self._read_text(context)
        if not extraction.text.strip():
            return self.create_result(False, start_time, error=self._no_text_error(extraction))

        text = extraction.text
        fields = self._search(self._patterns["payment"], text)

        amount = self._parse_amount(fields.get("amount"))
        required = [fields.get("payment_reference"), fields.get("payer_name"), amount, fields.get("payment_date")]
        confidence = sum(1 for value in required if value) / len(required)

        payment = ExtractedPayment(
            payment_reference=fields.get("payment_reference", ""),
            payer_name=fields.get("payer_name", ""),
            payer_id=fields.get("payer_id"),
            amount=amount,
            currency=self._parse_currency(text),
            payment_date=self._parse_date(fields.get("payment_date")),
            payment_method=self._parse_payment_method(fields.get("method") or text),
            bank_reference=fields.get("bank_reference"),
            description=fields.get("description"),
            confidence=round(confidence * extraction.confidence, 2),
            raw_text=text[:1000],
        )
        return self.create_result(True, start_time, data=payment, metadata={"method": extraction.method})

    async def extract_remittance(self, context: ProcessorContext) -> ProcessingResult:
        start_time = time.monotonic()
        extraction = await self._read_text(context)
        if not extraction.text.strip():
            return self.create_result(False, start_time, error=self._no_text_error(extraction))

        text = extraction.text
        patterns = self._patterns["remittance"]
        fields = self._search(patterns, text)

        jobs = []
        for match in patterns["job_line"].finditer(text):
            work_order, description, total = match.groups()
            service_date = self._parse_date(self._first_date(description))
            jobs.append(ExtractedRemittanceJob(
                work_order_number=work_order,
                description=description.strip(),
                service_date=service_date.isoformat() if service_date else "",
                total_amount=self._parse_amount(total),
            ))

        deductions = [
            RemittanceDeduction(description=desc.strip(), amount=self._parse_amount(amount))
            for desc, amount in patterns["deduction_line"].findall(text)
        ]

        total_amount = self._parse_amount(fields.get("total_amount"))
        if not total_amount and jobs:
            total_amount = round(sum(job.total_amount for job in jobs) - sum(d.amount for d in deductions), 2)

        remittance_date = self._parse_date(fields.get("remittance_date"))
        payment_date = self._parse_date(fields.get("payment_date"))
        required = [fields.get("remittance_number"), fields.get("fleet_company_name"), jobs, total_amount]
        confidence = sum(1 for value in required if value) / len(required)

        remittance = ExtractedRemittance(
            remittance_number=fields.get("remittance_number", ""),
            fleet_company_name=fields.get("fleet_company_name", ""),
            shop_name=fields.get("shop_name"),
            remittance_date=remittance_date.isoformat() if remittance_date else "",
            payment_date=payment_date.isoformat() if payment_date else None,
            total_amount=total_amount,
            currency=self._parse_currency(text),
            payment_method=PaymentMethod.CHECK if fields.get("check_number") else self._parse_payment_method(text),
            check_number=fields.get("check_number"),
            jobs=jobs,
            deductions=deductions,
            confidence=round(confidence * extraction.confidence, 2),
            raw_text=text[:1000],
        )
        return self.create_result(True, start_time, data=remittance, metadata={"method": extraction.method})

    # ============== Field parsing ==============

    @staticmethod
    def _search(patterns: Dict[str, re.Pattern], text: str) -> Dict[str, str]:
        """First match of every single-value pattern."""
        found = {}
        for field_name, pattern in patterns.items():
            if field_name.endswith("_line"):
                continue
            match = pattern.search(text)
            if match:
                found[field_name] = match.group(1).strip()
        return found

    @staticmethod
    def _no_text_error(extraction: TextExtraction) -> str:
        if extraction.errors:
            return "; ".join(extraction.errors)
        return "No text could be read from document"

    def _first_date(self, text: str) -> Optional[str]:
        match = self._patterns["date"].search(text)
        return match.group(1) if match else None

    @staticmethod
    def _parse_date(date_str: Optional[str]) -> Optional[date]:
        """Parse date string into date object."""
        if not date_str:
            return None

        formats = [
            "%Y-%m-%d", "%Y/%m/%d",
            "%m/%d/%Y", "%d/%m/%Y",
            "%m-%d-%Y", "%d-%m-%Y",
            "%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y",
            "%d %B %Y", "%d %b %Y",
        ]

        for fmt in formats:
            try:
                return datetime.strptime(date_str.strip(), fmt).date()
            except ValueError:
                continue
        return None

    @staticmethod
    def _parse_amount(amount_str: Optional[str]) -> float:
        """Parse amount string into float."""
        if not amount_str:
            return 0.0
        cleaned = re.sub(r"[,$€£\s]", "", amount_str)
        try:
            return float(cleaned)
        except ValueError:
            return 0.0

    def _parse_currency(self, text: str) -> str:
        """First currency code or symbol in the text; USD when none."""
        symbols = {"$": "USD", "€": "EUR", "£": "GBP"}
        match = self._patterns["currency"].search(text)
        if not match:
            return "USD"
        code, symbol = match.groups()
        return code.upper() if code else symbols[symbol]

    @staticmethod
    def _parse_payment_method(text: str) -> Optional[PaymentMethod]:
        lowered = text.lower()
        for keyword, method in PAYMENT_METHOD_KEYWORDS:
            if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                return method
        return None
