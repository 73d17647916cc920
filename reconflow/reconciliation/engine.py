"""
Reconciliation Engine

Core business logic for matching invoices to payments:
- Scoring invoice/payment pairs into match suggestions
- Auto-matching high-confidence suggestions
- Committing reconciliations and updating invoice/payment status
- Raising exceptions for discrepancies and unmatched items
- Dashboard aggregates
"""
import logging
import math
import re
from datetime import datetime, time as dt_time, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..database.ledger_db import LedgerDatabase
from ..models.ledger import (
    DashboardStats,
    DiscrepancyType,
    ExceptionRecord,
    ExceptionStatus,
    ExceptionType,
    Invoice,
    InvoiceStatus,
    MatchType,
    MatchedBy,
    Payment,
    PaymentStatus,
    Reconciliation,
    ReconciliationStatus,
    ReconciliationSuggestion,
    Severity,
    utcnow,
)
from ..models.processing import ProcessingStatus
from ..utils.config import RECONCILIATION_RULES

logger = logging.getLogger(__name__)

UNRECONCILED_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.UNMATCHED)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_name(value: str) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def fuzzy_match(first: str, second: str) -> bool:
    """Containment either way after dropping case and non-alphanumerics."""
    a, b = normalize_name(first), normalize_name(second)
    return a in b or b in a


def days_between(first: datetime, second: datetime) -> int:
    """Whole days between two instants, rounded up."""
    return math.ceil(abs((second - first).total_seconds()) / 86400)


def start_of_day(value) -> datetime:
    return datetime.combine(value, dt_time.min, tzinfo=timezone.utc)


class ReconciliationEngine:
    """
    Matches invoices against payments for one organization at a time.

    Matching weights and thresholds come from RECONCILIATION_RULES and can
    be overridden per instance.
    """

    def __init__(
        self,
        ledger: LedgerDatabase,
        rules: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.rules = rules or RECONCILIATION_RULES
        self.clock = clock
        self.tolerance = self.rules["amount_tolerance"]
        self.weights = self.rules["weights"]

    # ============== Suggestions ==============

    def generate_suggestions(self, organization_id: str) -> List[ReconciliationSuggestion]:
        """
        Score every pending invoice against every pending/unmatched payment.

        Returns:
            Suggestions above the minimum confidence, highest confidence first
            (ties keep invoice-then-payment order)
        """
        invoices = self.ledger.list_invoices(organization_id, status=InvoiceStatus.PENDING)
        payments = self.ledger.list_payments(organization_id, status=UNRECONCILED_PAYMENT_STATUSES)
        floor = self.rules["min_suggestion_confidence"]

        suggestions = []
        for invoice in invoices:
            for payment in payments:
                suggestion = self.evaluate_match(invoice, payment)
                if suggestion and suggestion.confidence > floor:
                    suggestions.append(suggestion)

        return sorted(suggestions, key=lambda s: s.confidence, reverse=True)

    def evaluate_match(self, invoice: Invoice, payment: Payment) -> Optional[ReconciliationSuggestion]:
        """Score one invoice/payment pair; None when nothing matches."""
        if invoice.currency != payment.currency:
            return None

        reasons = []
        score = 0.0

        if abs(invoice.amount - payment.amount) <= self.tolerance:
            reasons.append("Exact amount match")
            score += self.weights["exact_amount"]
        elif payment.amount >= invoice.amount * self.rules["partial_match_threshold"]:
            match_pct = min(payment.amount, invoice.amount) / max(payment.amount, invoice.amount)
            reasons.append(f"Amount {match_pct * 100:.1f}% match")
            score += match_pct * self.weights["partial_amount"]

        if invoice.invoice_number.lower() in (payment.description or "").lower():
            reasons.append("Invoice reference in payment description")
            score += self.weights["reference_in_description"]

        if fuzzy_match(invoice.vendor_name, payment.description) or fuzzy_match(
            invoice.vendor_name, payment.payer_name
        ):
            reasons.append("Vendor name match")
            score += self.weights["vendor_name"]

        days = abs((payment.payment_date - invoice.due_date).days)
        if days <= 30:
            reasons.append("Payment within 30 days of due date")
            score += self.weights["within_30_days"]
        elif days <= 60:
            reasons.append("Payment within 60 days of due date")
            score += self.weights["within_60_days"]

        if not reasons:
            return None

        return ReconciliationSuggestion(
            invoice_id=invoice.id,
            payment_id=payment.id,
            confidence=min(score, 1.0),
            match_reasons=reasons,
            discrepancy_amount=payment.amount - invoice.amount,
        )

    # ============== Matching ==============

    def auto_reconcile(self, organization_id: str, min_confidence: Optional[float] = None) -> List[Reconciliation]:
        """
        Commit the best suggestions greedily.

        Each invoice and each payment is used at most once per call.
        Suggestions whose records changed underneath us are skipped.
        """
        if min_confidence is None:
            min_confidence = self.rules["auto_match_confidence"]

        used_invoices: Set[str] = set()
        used_payments: Set[str] = set()
        reconciled = []

        for suggestion in self.generate_suggestions(organization_id):
            if suggestion.confidence < min_confidence:
                continue
            if suggestion.invoice_id in used_invoices or suggestion.payment_id in used_payments:
                continue

            reconciliation = self.create_reconciliation(
                organization_id, suggestion.invoice_id, suggestion.payment_id, MatchedBy.AUTO
            )
            if reconciliation is None:
                logger.info(
                    f"Skipped suggestion {suggestion.invoice_id}/{suggestion.payment_id}: records changed"
                )
                continue

            reconciled.append(reconciliation)
            used_invoices.add(suggestion.invoice_id)
            used_payments.add(suggestion.payment_id)

        logger.info(f"Auto-reconciled {len(reconciled)} pair(s) for {organization_id}")
        return reconciled

    def create_reconciliation(
        self,
        organization_id: str,
        invoice_id: str,
        payment_id: str,
        matched_by: MatchedBy = MatchedBy.MANUAL,
        notes: str = "",
    ) -> Optional[Reconciliation]:
        """
        Pair an invoice with a payment.

        Writes the reconciliation, the new invoice and payment statuses and,
        for amounts outside tolerance, an amount_discrepancy exception, all
        in one transaction.

        Returns:
            The reconciliation, or None if either record is missing or was
            modified concurrently (nothing is written in that case)
        """
        invoice = self.ledger.get_invoice(organization_id, invoice_id)
        payment = self.ledger.get_payment(organization_id, payment_id)
        if invoice is None or payment is None:
            return None

        matched_by = MatchedBy(matched_by)
        discrepancy = payment.amount - invoice.amount
        within_tolerance = abs(discrepancy) <= self.tolerance

        reconciliation = Reconciliation(
            organization_id=organization_id,
            invoice_id=invoice.id,
            payment_id=payment.id,
            matched_amount=min(invoice.amount, payment.amount),
            match_type=self._match_type(discrepancy),
            match_confidence=self.rules["match_confidence"][matched_by.value],
            discrepancy_amount=discrepancy,
            discrepancy_type=self._discrepancy_type(discrepancy, invoice, payment),
            status=ReconciliationStatus.APPROVED if within_tolerance else ReconciliationStatus.PENDING_REVIEW,
            notes=notes or "",
            matched_by=matched_by,
        )

        invoice_status, payment_status = self._settled_statuses(discrepancy)
        now = self.clock()
        updated_invoice = invoice.model_copy(update={
            "status": invoice_status,
            "reconciliation_id": reconciliation.id,
            "version": invoice.version + 1,
            "updated_at": now,
        })
        updated_payment = payment.model_copy(update={
            "status": payment_status,
            "reconciliation_id": reconciliation.id,
            "version": payment.version + 1,
            "updated_at": now,
        })

        exception = None
        if not within_tolerance:
            exception = self._discrepancy_exception(reconciliation, invoice, payment, discrepancy)

        committed = self.ledger.commit_reconciliation(
            reconciliation,
            updated_invoice,
            updated_payment,
            exception,
            expected_invoice_version=invoice.version,
            expected_payment_version=payment.version,
        )
        if not committed:
            return None

        logger.info(
            f"Reconciled invoice {invoice.invoice_number} with payment {payment.payment_reference} "
            f"({reconciliation.match_type.value}, {matched_by.value})"
        )
        return reconciliation

    def _match_type(self, discrepancy: float) -> MatchType:
        if abs(discrepancy) <= self.tolerance:
            return MatchType.EXACT
        if discrepancy > 0:
            return MatchType.OVERPAYMENT
        return MatchType.UNDERPAYMENT

    def _discrepancy_type(self, discrepancy: float, invoice: Invoice, payment: Payment) -> Optional[DiscrepancyType]:
        if abs(discrepancy) <= self.tolerance:
            return None
        if invoice.currency != payment.currency:
            return DiscrepancyType.CURRENCY_MISMATCH
        return DiscrepancyType.AMOUNT_MISMATCH

    def _settled_statuses(self, discrepancy: float) -> Tuple[InvoiceStatus, PaymentStatus]:
        if abs(discrepancy) <= self.tolerance:
            return InvoiceStatus.MATCHED, PaymentStatus.MATCHED
        if discrepancy < 0:
            return InvoiceStatus.PARTIALLY_MATCHED, PaymentStatus.MATCHED
        return InvoiceStatus.MATCHED, PaymentStatus.PARTIALLY_MATCHED

    def _discrepancy_exception(
        self, reconciliation: Reconciliation, invoice: Invoice, payment: Payment, discrepancy: float
    ) -> ExceptionRecord:
        thresholds = self.rules["discrepancy_severity"]
        magnitude = abs(discrepancy)
        if magnitude > thresholds["high"]:
            severity = Severity.HIGH
        elif magnitude > thresholds["medium"]:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW

        if discrepancy > 0:
            description = f"Overpayment of {magnitude:.2f} {payment.currency} for invoice {invoice.invoice_number}"
            suggested_action = "Issue credit note or apply to future invoices"
        else:
            description = f"Underpayment of {magnitude:.2f} {payment.currency} for invoice {invoice.invoice_number}"
            suggested_action = "Request additional payment or write off balance"

        return ExceptionRecord(
            organization_id=reconciliation.organization_id,
            type=ExceptionType.AMOUNT_DISCREPANCY,
            severity=severity,
            invoice_id=invoice.id,
            payment_id=payment.id,
            reconciliation_id=reconciliation.id,
            description=description,
            suggested_action=suggested_action,
            status=ExceptionStatus.OPEN,
        )

    # ============== Exceptions ==============

    def identify_exceptions(self, organization_id: str) -> List[ExceptionRecord]:
        """
        Raise exceptions for overdue pending invoices and unmatched payments.

        Records that already have an unresolved exception are skipped, so
        repeated calls create nothing new until that exception is resolved.
        """
        now = self.clock()
        existing = [
            e for e in self.ledger.list_exceptions(organization_id)
            if e.status != ExceptionStatus.RESOLVED
        ]
        flagged_invoices = {e.invoice_id for e in existing if e.invoice_id}
        flagged_payments = {e.payment_id for e in existing if e.payment_id}
        created = []

        for invoice in self.ledger.list_invoices(organization_id, status=InvoiceStatus.PENDING):
            due = start_of_day(invoice.due_date)
            if invoice.id in flagged_invoices or not due < now:
                continue

            overdue_days = days_between(due, now)
            exception = self.ledger.create_exception(ExceptionRecord(
                organization_id=organization_id,
                type=ExceptionType.UNMATCHED_INVOICE,
                severity=Severity.HIGH if overdue_days > self.rules["overdue_high_days"] else Severity.MEDIUM,
                invoice_id=invoice.id,
                description=f"Invoice {invoice.invoice_number} is overdue and has no matching payment",
                suggested_action="Review payment records or follow up with payer",
            ))
            created.append(exception)

        for payment in self.ledger.list_payments(organization_id, status=UNRECONCILED_PAYMENT_STATUSES):
            if payment.id in flagged_payments:
                continue

            high = payment.amount > self.rules["unmatched_payment_high_amount"]
            exception = self.ledger.create_exception(ExceptionRecord(
                organization_id=organization_id,
                type=ExceptionType.UNMATCHED_PAYMENT,
                severity=Severity.HIGH if high else Severity.MEDIUM,
                payment_id=payment.id,
                description=f"Payment {payment.payment_reference} has no matching invoice",
                suggested_action="Identify corresponding invoice or process refund",
            ))
            created.append(exception)

        if created:
            logger.info(f"Raised {len(created)} new exception(s) for {organization_id}")
        return created

    # ============== Dashboard ==============

    def get_dashboard_stats(self, organization_id: str) -> DashboardStats:
        invoices = self.ledger.list_invoices(organization_id)
        payments = self.ledger.list_payments(organization_id)
        reconciliations = self.ledger.list_reconciliations(organization_id)
        open_exceptions = self.ledger.list_exceptions(organization_id, status=ExceptionStatus.OPEN)

        matched = [
            i for i in invoices
            if i.status in (InvoiceStatus.MATCHED, InvoiceStatus.PARTIALLY_MATCHED)
        ]

        return DashboardStats(
            total_invoices=len(invoices),
            total_payments=len(payments),
            total_reconciled=len(reconciliations),
            total_exceptions=len(open_exceptions),
            total_invoice_amount=sum(i.amount for i in invoices),
            total_payment_amount=sum(p.amount for p in payments),
            reconciled_amount=sum(r.matched_amount for r in reconciliations),
            unreconciled_invoice_amount=sum(i.amount for i in invoices if i.status == InvoiceStatus.PENDING),
            unreconciled_payment_amount=sum(
                p.amount for p in payments if p.status in UNRECONCILED_PAYMENT_STATUSES
            ),
            match_rate=(len(matched) / len(invoices) * 100) if invoices else 0.0,
            avg_processing_time=self._avg_processing_time(organization_id),
        )

    def _avg_processing_time(self, organization_id: str) -> float:
        """Mean seconds from start to completion over completed processing jobs."""
        durations = [
            (job.completed_at - job.started_at).total_seconds()
            for job in self.ledger.all_jobs(organization_id, status=ProcessingStatus.COMPLETED)
            if job.completed_at is not None
        ]
        if not durations:
            return 0.0
        return round(sum(durations) / len(durations), 2)
