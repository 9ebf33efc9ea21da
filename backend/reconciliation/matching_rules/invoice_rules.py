"""
Invoice Matching Rules

Scores how likely a bank transaction is the payment of an invoice.

Criteria (points, total clamped to 0-100):
- amount:         50 exact, 45 within 0.10, 35 within 1.00, 20 within 5.00,
                  10 within 5% of the invoice total
- date:           20 same day, 15 within 2 days, 10 within 7, 5 within 14
                  (measured against the due date, else the issue date)
- invoice_number: 30 when the alphanumeric invoice number appears in the
                  alphanumeric description
- reference:      10 when the payment reference appears verbatim in the
                  description
- vendor:         optional, up to MATCH_VENDOR_WEIGHT for counterparty names
                  similar to the vendor name (disabled by default)

Confidence:
- High (>=90): Auto-match
- Medium (50-89): Suggested match
- Low (<50): Manual review
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Dict, Optional

from config import get_settings
from database.repositories import CandidateQuery
from models.enums import MatchConfidence, ReconciliationStatus, SuggestedAction
from models.schemas import BankTransaction, Invoice

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")

# Sorts transactions without a measurable date distance last
NO_DATE_DISTANCE = 10 ** 6


@dataclass
class ScoreBreakdown:
    """Points earned per criterion"""
    amount: int = 0
    date: int = 0
    invoice_number: int = 0
    reference: int = 0
    vendor: int = 0

    @property
    def total(self) -> int:
        raw = self.amount + self.date + self.invoice_number + self.reference + self.vendor
        return max(0, min(100, raw))

    def to_dict(self) -> Dict[str, int]:
        return {
            "amount": self.amount,
            "date": self.date,
            "invoice_number": self.invoice_number,
            "reference": self.reference,
            "vendor": self.vendor,
            "total": self.total,
        }


class InvoiceMatchingRules:
    """
    Pure scoring of (invoice, transaction) pairs.

    No I/O: safe to call concurrently for any number of invoices.
    """

    # Amount tiers (absolute difference -> points)
    AMOUNT_EXACT_POINTS = 50
    AMOUNT_TIERS = (
        (Decimal("0.10"), 45),
        (Decimal("1.00"), 35),
        (Decimal("5.00"), 20),
    )
    AMOUNT_PERCENT_TOLERANCE = Decimal("0.05")
    AMOUNT_PERCENT_POINTS = 10

    # Date tiers (days from reference date -> points)
    DATE_TIERS = (
        (0, 20),
        (2, 15),
        (7, 10),
        (14, 5),
    )

    INVOICE_NUMBER_POINTS = 30
    REFERENCE_POINTS = 10

    VENDOR_SIMILARITY_THRESHOLD = 0.6

    # Confidence thresholds
    HIGH_CONFIDENCE_MIN = 90
    MEDIUM_CONFIDENCE_MIN = 50

    def __init__(
        self,
        vendor_weight: Optional[int] = None,
        date_window_days: Optional[int] = None,
        amount_tolerance_percent: Optional[float] = None
    ):
        settings = get_settings()
        self.vendor_weight = (
            vendor_weight if vendor_weight is not None else settings.MATCH_VENDOR_WEIGHT
        )
        self.date_window_days = (
            date_window_days if date_window_days is not None else settings.MATCH_DATE_WINDOW_DAYS
        )
        self.amount_tolerance_percent = Decimal(str(
            amount_tolerance_percent if amount_tolerance_percent is not None
            else settings.MATCH_AMOUNT_TOLERANCE_PERCENT
        ))

    # ==================== SCORING ====================

    def score(self, invoice: Invoice, transaction: BankTransaction) -> ScoreBreakdown:
        """
        Score a candidate payment for an invoice.

        Args:
            invoice: The invoice being paid
            transaction: The candidate bank transaction

        Returns:
            ScoreBreakdown; ``total`` is the clamped 0-100 score
        """
        return ScoreBreakdown(
            amount=self._score_amount(invoice, transaction),
            date=self._score_date(invoice, transaction),
            invoice_number=self._score_invoice_number(invoice, transaction),
            reference=self._score_reference(invoice, transaction),
            vendor=self._score_vendor(invoice, transaction),
        )

    def _score_amount(self, invoice: Invoice, transaction: BankTransaction) -> int:
        invoice_amount = abs(invoice.total)
        diff = abs(invoice_amount - abs(transaction.amount))

        if diff == 0:
            return self.AMOUNT_EXACT_POINTS

        for limit, points in self.AMOUNT_TIERS:
            if diff <= limit:
                return points

        if invoice_amount > 0 and diff / invoice_amount <= self.AMOUNT_PERCENT_TOLERANCE:
            return self.AMOUNT_PERCENT_POINTS

        return 0

    def _score_date(self, invoice: Invoice, transaction: BankTransaction) -> int:
        days = self.day_distance(invoice, transaction)
        if days is None:
            return 0

        for limit, points in self.DATE_TIERS:
            if days <= limit:
                return points

        return 0

    def _score_invoice_number(self, invoice: Invoice, transaction: BankTransaction) -> int:
        if not invoice.invoice_number or not transaction.description:
            return 0

        number = _NON_ALPHANUMERIC.sub("", invoice.invoice_number)
        description = _NON_ALPHANUMERIC.sub("", transaction.description)

        if number and number in description:
            return self.INVOICE_NUMBER_POINTS
        return 0

    def _score_reference(self, invoice: Invoice, transaction: BankTransaction) -> int:
        if not invoice.payment_reference or not transaction.description:
            return 0

        if invoice.payment_reference in transaction.description:
            return self.REFERENCE_POINTS
        return 0

    def _score_vendor(self, invoice: Invoice, transaction: BankTransaction) -> int:
        """Fuzzy vendor/counterparty similarity (0 when disabled)."""
        if self.vendor_weight <= 0:
            return 0

        vendor = (invoice.vendor_name or "").lower().strip()
        counterparty = (transaction.counterparty_name or "").lower().strip()
        if not vendor or not counterparty:
            return 0

        similarity = SequenceMatcher(None, vendor, counterparty).ratio()
        if similarity < self.VENDOR_SIMILARITY_THRESHOLD:
            return 0

        return round(self.vendor_weight * similarity)

    # ==================== CLASSIFICATION ====================

    def classify(self, score: int) -> MatchConfidence:
        if score >= self.HIGH_CONFIDENCE_MIN:
            return MatchConfidence.HIGH
        if score >= self.MEDIUM_CONFIDENCE_MIN:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW

    def suggested_action(self, score: int) -> SuggestedAction:
        confidence = self.classify(score)
        if confidence == MatchConfidence.HIGH:
            return SuggestedAction.AUTO_MATCH
        if confidence == MatchConfidence.MEDIUM:
            return SuggestedAction.SUGGEST
        return SuggestedAction.MANUAL_REVIEW

    # ==================== CANDIDATES ====================

    @staticmethod
    def day_distance(invoice: Invoice, transaction: BankTransaction) -> Optional[int]:
        reference = invoice.reference_date
        if reference is None:
            return None
        return abs((transaction.execution_date - reference).days)

    def rank_key(self, score: int, invoice: Invoice, transaction: BankTransaction):
        """Sort key: score desc, then closer date, then transaction id."""
        days = self.day_distance(invoice, transaction)
        return (
            -score,
            days if days is not None else NO_DATE_DISTANCE,
            transaction.id,
        )

    def candidate_query(
        self,
        invoice: Invoice,
        account_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> CandidateQuery:
        """
        Cheap pre-filter bounding the search: pending outflows within the
        date window and the amount tolerance of the invoice.
        """
        reference = invoice.reference_date or today or date.today()
        window = timedelta(days=self.date_window_days)
        total = abs(invoice.total)

        return CandidateQuery(
            date_from=reference - window,
            date_to=reference + window,
            amount_min=total * (1 - self.amount_tolerance_percent),
            amount_max=total * (1 + self.amount_tolerance_percent),
            status=ReconciliationStatus.PENDING,
            expenses_only=True,
            account_id=account_id,
        )


# Instantiate rules engine
invoice_rules = InvoiceMatchingRules()
