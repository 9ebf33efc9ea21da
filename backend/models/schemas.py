import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field, ConfigDict

from .enums import (
    ReconciliationStatus,
    InvoiceStatus,
    MatchConfidence,
    MatchStatus,
    DecidedBy,
    TransactionCategory,
    MATCHABLE_INVOICE_STATUSES,
)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== CANDIDATE TRANSACTION ====================
class CandidateTransaction(BaseModel):
    """A statement row parsed but not yet persisted (no identity)."""
    execution_date: date
    amount: Decimal = Field(..., description="Signed amount, negative = outflow")
    currency: str = "EUR"
    description: str = "No description"
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    category: Optional[TransactionCategory] = None
    category_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    row_number: Optional[int] = Field(default=None, description="Source line in the statement")


# ==================== BANK TRANSACTION ====================
class BankTransaction(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    account_id: str
    fingerprint: str = Field(..., description="Deterministic content hash, unique per account")
    execution_date: date
    value_date: Optional[date] = None
    amount: Decimal
    currency: str = "EUR"
    description: str = "No description"
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING
    linked_invoice_id: Optional[str] = None
    suggested_category: Optional[TransactionCategory] = None
    category_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateTransaction,
        account_id: str,
        fingerprint: str,
        category_confidence: Optional[int] = None
    ) -> "BankTransaction":
        return cls(
            account_id=account_id,
            fingerprint=fingerprint,
            execution_date=candidate.execution_date,
            # CSV exports carry a single booking date
            value_date=candidate.execution_date,
            amount=candidate.amount,
            currency=candidate.currency,
            description=candidate.description,
            counterparty_name=candidate.counterparty_name,
            counterparty_account=candidate.counterparty_account,
            suggested_category=candidate.category,
            category_confidence=(
                category_confidence if category_confidence is not None
                else candidate.category_confidence
            ) if candidate.category else None,
        )

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "external_fingerprint": self.fingerprint,
            "amount": str(self.amount),
            "currency": self.currency,
            "description": self.description,
            "counterparty_name": self.counterparty_name,
            "counterparty_account": self.counterparty_account,
            "execution_date": self.execution_date.isoformat(),
            "value_date": self.value_date.isoformat() if self.value_date else None,
            "reconciliation_status": self.reconciliation_status.value,
            "linked_invoice_id": self.linked_invoice_id,
            "suggested_category": self.suggested_category.value if self.suggested_category else None,
            "category_confidence": self.category_confidence,
            "created_at": self.created_at.isoformat(),
        }


# ==================== INVOICE ====================
class Invoice(BaseModel):
    """Invoice as seen by the matching engine (read-only, owned elsewhere)."""
    id: str = Field(default_factory=generate_uuid)
    total: Decimal
    currency: str = "EUR"
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    invoice_number: Optional[str] = None
    payment_reference: Optional[str] = None
    vendor_name: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.PENDING

    model_config = ConfigDict(from_attributes=True)

    @property
    def reference_date(self) -> Optional[date]:
        """Date that payments are measured against: due date, else issue date."""
        return self.due_date or self.issue_date

    @property
    def is_matchable(self) -> bool:
        return self.status in MATCHABLE_INVOICE_STATUSES


# ==================== RECONCILIATION MATCH ====================
class ReconciliationMatch(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    invoice_id: str
    transaction_id: str
    score: int = Field(..., ge=0, le=100)
    confidence: MatchConfidence
    status: MatchStatus = MatchStatus.PROPOSED
    decided_by: DecidedBy = DecidedBy.SYSTEM
    decider_id: Optional[str] = None
    notes: Optional[str] = None
    score_breakdown: Dict[str, int] = Field(default_factory=dict)
    previous_invoice_status: Optional[InvoiceStatus] = None
    decided_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == MatchStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "score": self.score,
            "confidence": self.confidence.value,
            "status": self.status.value,
            "decided_by": self.decided_by.value,
            "decider_id": self.decider_id,
            "notes": self.notes,
            "score_breakdown": self.score_breakdown,
            "decided_at": self.decided_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }
