"""
Reconciliation Core - Store Contracts

Persistence is reached only through these async interfaces. The services
never see SQL; deployments bind either the in-memory store (tests, local
runs) or the SQLAlchemy store.

Write methods raise:
- NotFoundError for unknown ids
- ConflictError when a uniqueness or one-active-match rule would break
- StoreError for any other persistence failure
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from models.enums import (
    ReconciliationStatus, InvoiceStatus, MatchStatus, TransactionCategory
)
from models.schemas import BankTransaction, Invoice, ReconciliationMatch


@dataclass
class CandidateQuery:
    """Pre-filter for transactions that may pay an invoice"""
    date_from: date
    date_to: date
    amount_min: Decimal   # bounds on |amount|
    amount_max: Decimal
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    expenses_only: bool = True
    account_id: Optional[str] = None

    def accepts(self, transaction: BankTransaction) -> bool:
        if transaction.reconciliation_status != self.status:
            return False
        if self.expenses_only and transaction.amount >= 0:
            return False
        if self.account_id and transaction.account_id != self.account_id:
            return False
        if not self.date_from <= transaction.execution_date <= self.date_to:
            return False
        return self.amount_min <= abs(transaction.amount) <= self.amount_max


class TransactionStore(ABC):

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        ...

    @abstractmethod
    async def find_by_fingerprint(self, account_id: str, fingerprint: str) -> Optional[BankTransaction]:
        ...

    @abstractmethod
    async def add_many(self, transactions: List[BankTransaction]) -> List[BankTransaction]:
        """Insert all or nothing; ConflictError on a duplicate (account_id, fingerprint)."""

    @abstractmethod
    async def update_category(
        self,
        transaction_id: str,
        category: Optional[TransactionCategory],
        confidence: Optional[int]
    ) -> BankTransaction:
        ...

    @abstractmethod
    async def find_candidates(self, query: CandidateQuery) -> List[BankTransaction]:
        ...

    @abstractmethod
    async def set_status(
        self,
        transaction_id: str,
        status: ReconciliationStatus,
        linked_invoice_id: Optional[str] = None
    ) -> BankTransaction:
        ...

    @abstractmethod
    async def count_by_status(self, account_id: Optional[str] = None) -> Dict[str, int]:
        ...


class InvoiceStore(ABC):

    @abstractmethod
    async def get(self, invoice_id: str) -> Optional[Invoice]:
        ...

    @abstractmethod
    async def add(self, invoice: Invoice) -> Invoice:
        """Register or refresh an invoice (the invoicing service owns creation)."""

    @abstractmethod
    async def list_matchable(self) -> List[Invoice]:
        """Invoices in PENDING or OVERDUE status."""

    @abstractmethod
    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        ...


class MatchStore(ABC):

    @abstractmethod
    async def get(self, match_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    async def get_by_pair(self, invoice_id: str, transaction_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    async def find_active_for_invoice(self, invoice_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    async def find_active_for_transaction(self, transaction_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    async def add(self, match: ReconciliationMatch) -> ReconciliationMatch:
        """ConflictError when a record for the pair already exists."""

    @abstractmethod
    async def set_status(
        self,
        match_id: str,
        status: MatchStatus,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        ...

    @abstractmethod
    async def list_for_invoice(self, invoice_id: str) -> List[ReconciliationMatch]:
        ...


class ReconciliationUnitOfWork(ABC):
    """
    Atomic multi-record writes of the reconciliation state machine.

    Both methods re-check their preconditions inside the write and raise
    ConflictError when a concurrent decision got there first.
    """

    @abstractmethod
    async def confirm(
        self,
        match: ReconciliationMatch,
        invoice_status: InvoiceStatus = InvoiceStatus.PAID
    ) -> ReconciliationMatch:
        """
        Persist ``match`` as CONFIRMED (insert, or promote the stored record
        for the pair), link the transaction as MATCHED and move the invoice
        to ``invoice_status``.
        """

    @abstractmethod
    async def revert(
        self,
        match: ReconciliationMatch,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        """
        Mark a CONFIRMED match REJECTED, return its transaction to PENDING and
        restore the invoice status remembered on the match.
        """


@dataclass
class Stores:
    """The four collaborators a deployment binds together"""
    transactions: TransactionStore
    invoices: InvoiceStore
    matches: MatchStore
    unit_of_work: ReconciliationUnitOfWork
