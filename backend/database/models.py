"""
Reconciliation Core - Database Models

Tables:
- bank_transactions: imported statement rows, unique per (account, fingerprint)
- invoices: read model of invoices owned by the invoicing service
- reconciliation_matches: invoice <-> transaction links and their decisions

The "one confirmed match per invoice / per transaction" rule is enforced by
partial unique indexes so that concurrent confirmations lose with an
IntegrityError instead of creating a second active link.
"""

from sqlalchemy import (
    Column, String, Text, Integer, Date, DateTime,
    ForeignKey, Index, UniqueConstraint, JSON, Numeric, text
)

from database.connection import Base
from models.enums import (
    ReconciliationStatus, InvoiceStatus, MatchConfidence, MatchStatus,
    DecidedBy, TransactionCategory
)
from models.schemas import (
    BankTransaction, Invoice, ReconciliationMatch, generate_uuid, utc_now
)


# ==================== BANK TRANSACTIONS ====================

class BankTransactionDB(Base):
    __tablename__ = "bank_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), nullable=False, index=True)
    external_fingerprint = Column(String(64), nullable=False)

    execution_date = Column(Date, nullable=False, index=True)
    value_date = Column(Date, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    description = Column(Text, nullable=False)
    counterparty_name = Column(Text, nullable=True)
    counterparty_account = Column(String(34), nullable=True)

    reconciliation_status = Column(
        String(20), nullable=False, default=ReconciliationStatus.PENDING.value
    )
    linked_invoice_id = Column(String(36), nullable=True)
    suggested_category = Column(String(40), nullable=True)
    category_confidence = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("account_id", "external_fingerprint", name="uq_bank_transactions_fingerprint"),
        Index("ix_bank_transactions_status_date", "reconciliation_status", "execution_date"),
    )

    def to_domain(self) -> BankTransaction:
        return BankTransaction(
            id=self.id,
            account_id=self.account_id,
            fingerprint=self.external_fingerprint,
            execution_date=self.execution_date,
            value_date=self.value_date,
            amount=self.amount,
            currency=self.currency,
            description=self.description,
            counterparty_name=self.counterparty_name,
            counterparty_account=self.counterparty_account,
            reconciliation_status=ReconciliationStatus(self.reconciliation_status),
            linked_invoice_id=self.linked_invoice_id,
            suggested_category=(
                TransactionCategory(self.suggested_category) if self.suggested_category else None
            ),
            category_confidence=self.category_confidence,
            created_at=self.created_at or utc_now(),
            updated_at=self.updated_at or utc_now(),
        )

    @classmethod
    def from_domain(cls, transaction: BankTransaction) -> "BankTransactionDB":
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            external_fingerprint=transaction.fingerprint,
            execution_date=transaction.execution_date,
            value_date=transaction.value_date,
            amount=transaction.amount,
            currency=transaction.currency,
            description=transaction.description,
            counterparty_name=transaction.counterparty_name,
            counterparty_account=transaction.counterparty_account,
            reconciliation_status=transaction.reconciliation_status.value,
            linked_invoice_id=transaction.linked_invoice_id,
            suggested_category=(
                transaction.suggested_category.value if transaction.suggested_category else None
            ),
            category_confidence=transaction.category_confidence,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )


# ==================== INVOICES ====================

class InvoiceDB(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    total = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    invoice_number = Column(String(100), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    vendor_name = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @classmethod
    def from_domain(cls, invoice: Invoice) -> "InvoiceDB":
        return cls(
            id=invoice.id,
            total=invoice.total,
            currency=invoice.currency,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            invoice_number=invoice.invoice_number,
            payment_reference=invoice.payment_reference,
            vendor_name=invoice.vendor_name,
            status=invoice.status.value,
        )

    def to_domain(self) -> Invoice:
        return Invoice(
            id=self.id,
            total=self.total,
            currency=self.currency,
            issue_date=self.issue_date,
            due_date=self.due_date,
            invoice_number=self.invoice_number,
            payment_reference=self.payment_reference,
            vendor_name=self.vendor_name,
            status=InvoiceStatus(self.status),
        )


# ==================== RECONCILIATION MATCHES ====================

class ReconciliationMatchDB(Base):
    __tablename__ = "reconciliation_matches"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey("bank_transactions.id"), nullable=False, index=True)

    score = Column(Integer, nullable=False)
    confidence = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=MatchStatus.PROPOSED.value)
    decided_by = Column(String(20), nullable=False, default=DecidedBy.SYSTEM.value)
    decider_id = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)
    score_breakdown = Column(JSON, nullable=False, default=dict)
    previous_invoice_status = Column(String(20), nullable=True)

    decided_at = Column(DateTime(timezone=True), default=utc_now)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("invoice_id", "transaction_id", name="uq_reconciliation_matches_pair"),
        Index(
            "uq_reconciliation_matches_active_invoice", "invoice_id",
            unique=True, postgresql_where=text("status = 'confirmed'")
        ),
        Index(
            "uq_reconciliation_matches_active_transaction", "transaction_id",
            unique=True, postgresql_where=text("status = 'confirmed'")
        ),
    )

    def to_domain(self) -> ReconciliationMatch:
        return ReconciliationMatch(
            id=self.id,
            invoice_id=self.invoice_id,
            transaction_id=self.transaction_id,
            score=self.score,
            confidence=MatchConfidence(self.confidence),
            status=MatchStatus(self.status),
            decided_by=DecidedBy(self.decided_by),
            decider_id=self.decider_id,
            notes=self.notes,
            score_breakdown=self.score_breakdown or {},
            previous_invoice_status=(
                InvoiceStatus(self.previous_invoice_status) if self.previous_invoice_status else None
            ),
            decided_at=self.decided_at or utc_now(),
            created_at=self.created_at or utc_now(),
        )

    @classmethod
    def from_domain(cls, match: ReconciliationMatch) -> "ReconciliationMatchDB":
        return cls(
            id=match.id,
            invoice_id=match.invoice_id,
            transaction_id=match.transaction_id,
            score=match.score,
            confidence=match.confidence.value,
            status=match.status.value,
            decided_by=match.decided_by.value,
            decider_id=match.decider_id,
            notes=match.notes,
            score_breakdown=match.score_breakdown,
            previous_invoice_status=(
                match.previous_invoice_status.value if match.previous_invoice_status else None
            ),
            decided_at=match.decided_at,
            created_at=match.created_at,
        )
