"""
Reconciliation Core - In-Memory Stores

Dictionary-backed implementations of the store contracts. All stores created
by ``create_memory_stores`` share one asyncio.Lock, which makes the unit of
work's check-then-write atomic for every coroutine in the process.
Returned records are copies; mutate state only through the store methods.
"""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional

from models.enums import (
    DecidedBy, ReconciliationStatus, InvoiceStatus, MatchStatus, TransactionCategory
)
from models.schemas import BankTransaction, Invoice, ReconciliationMatch, utc_now
from utils.errors import ConflictError, NotFoundError
from .repositories import (
    CandidateQuery, TransactionStore, InvoiceStore, MatchStore,
    ReconciliationUnitOfWork, Stores
)

logger = logging.getLogger(__name__)


def _copy(record):
    return record.model_copy(deep=True)


class InMemoryTransactionStore(TransactionStore):

    def __init__(self, lock: Optional[asyncio.Lock] = None):
        self._lock = lock or asyncio.Lock()
        self._items: Dict[str, BankTransaction] = {}
        self._by_fingerprint: Dict[tuple, str] = {}

    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        item = self._items.get(transaction_id)
        return _copy(item) if item else None

    async def find_by_fingerprint(self, account_id: str, fingerprint: str) -> Optional[BankTransaction]:
        transaction_id = self._by_fingerprint.get((account_id, fingerprint))
        return await self.get(transaction_id) if transaction_id else None

    async def add_many(self, transactions: List[BankTransaction]) -> List[BankTransaction]:
        async with self._lock:
            keys = set()
            for transaction in transactions:
                key = (transaction.account_id, transaction.fingerprint)
                if key in self._by_fingerprint or key in keys:
                    raise ConflictError(
                        "Transaction already imported for this account",
                        {"account_id": transaction.account_id, "fingerprint": transaction.fingerprint}
                    )
                keys.add(key)

            for transaction in transactions:
                self._items[transaction.id] = _copy(transaction)
                self._by_fingerprint[(transaction.account_id, transaction.fingerprint)] = transaction.id

        return [_copy(t) for t in transactions]

    async def update_category(
        self,
        transaction_id: str,
        category: Optional[TransactionCategory],
        confidence: Optional[int]
    ) -> BankTransaction:
        async with self._lock:
            item = self._require(transaction_id)
            item.suggested_category = category
            item.category_confidence = confidence
            item.updated_at = utc_now()
            return _copy(item)

    async def find_candidates(self, query: CandidateQuery) -> List[BankTransaction]:
        return [_copy(t) for t in self._items.values() if query.accepts(t)]

    async def set_status(
        self,
        transaction_id: str,
        status: ReconciliationStatus,
        linked_invoice_id: Optional[str] = None
    ) -> BankTransaction:
        async with self._lock:
            item = self._require(transaction_id)
            self._apply_status(item, status, linked_invoice_id)
            return _copy(item)

    async def count_by_status(self, account_id: Optional[str] = None) -> Dict[str, int]:
        counts = Counter(
            t.reconciliation_status.value for t in self._items.values()
            if not account_id or t.account_id == account_id
        )
        return {status.value: counts.get(status.value, 0) for status in ReconciliationStatus}

    # Lock must be held by the caller
    def _require(self, transaction_id: str) -> BankTransaction:
        item = self._items.get(transaction_id)
        if not item:
            raise NotFoundError("Transaction", transaction_id)
        return item

    @staticmethod
    def _apply_status(item: BankTransaction, status: ReconciliationStatus, linked_invoice_id: Optional[str]):
        item.reconciliation_status = status
        item.linked_invoice_id = linked_invoice_id if status == ReconciliationStatus.MATCHED else None
        item.updated_at = utc_now()


class InMemoryInvoiceStore(InvoiceStore):

    def __init__(self, lock: Optional[asyncio.Lock] = None):
        self._lock = lock or asyncio.Lock()
        self._items: Dict[str, Invoice] = {}

    async def add(self, invoice: Invoice) -> Invoice:
        """Register an invoice (the invoicing service owns creation)."""
        async with self._lock:
            self._items[invoice.id] = _copy(invoice)
        return _copy(invoice)

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        item = self._items.get(invoice_id)
        return _copy(item) if item else None

    async def list_matchable(self) -> List[Invoice]:
        return [_copy(i) for i in self._items.values() if i.is_matchable]

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        async with self._lock:
            item = self._require(invoice_id)
            item.status = status
            return _copy(item)

    def _require(self, invoice_id: str) -> Invoice:
        item = self._items.get(invoice_id)
        if not item:
            raise NotFoundError("Invoice", invoice_id)
        return item


class InMemoryMatchStore(MatchStore):

    def __init__(self, lock: Optional[asyncio.Lock] = None):
        self._lock = lock or asyncio.Lock()
        self._items: Dict[str, ReconciliationMatch] = {}

    async def get(self, match_id: str) -> Optional[ReconciliationMatch]:
        item = self._items.get(match_id)
        return _copy(item) if item else None

    async def get_by_pair(self, invoice_id: str, transaction_id: str) -> Optional[ReconciliationMatch]:
        item = self._find_pair(invoice_id, transaction_id)
        return _copy(item) if item else None

    async def find_active_for_invoice(self, invoice_id: str) -> Optional[ReconciliationMatch]:
        item = self._find_active(invoice_id=invoice_id)
        return _copy(item) if item else None

    async def find_active_for_transaction(self, transaction_id: str) -> Optional[ReconciliationMatch]:
        item = self._find_active(transaction_id=transaction_id)
        return _copy(item) if item else None

    async def add(self, match: ReconciliationMatch) -> ReconciliationMatch:
        async with self._lock:
            if self._find_pair(match.invoice_id, match.transaction_id):
                raise ConflictError(
                    "A match record already exists for this invoice and transaction",
                    {"invoice_id": match.invoice_id, "transaction_id": match.transaction_id}
                )
            self._items[match.id] = _copy(match)
        return _copy(match)

    async def set_status(
        self,
        match_id: str,
        status: MatchStatus,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        async with self._lock:
            item = self._require(match_id)
            item.status = status
            item.decider_id = decider_id or item.decider_id
            item.notes = notes or item.notes
            item.decided_at = utc_now()
            return _copy(item)

    async def list_for_invoice(self, invoice_id: str) -> List[ReconciliationMatch]:
        matches = [_copy(m) for m in self._items.values() if m.invoice_id == invoice_id]
        matches.sort(key=lambda m: m.created_at)
        return matches

    def _require(self, match_id: str) -> ReconciliationMatch:
        item = self._items.get(match_id)
        if not item:
            raise NotFoundError("Match", match_id)
        return item

    def _find_pair(self, invoice_id: str, transaction_id: str) -> Optional[ReconciliationMatch]:
        for item in self._items.values():
            if item.invoice_id == invoice_id and item.transaction_id == transaction_id:
                return item
        return None

    def _find_active(
        self,
        invoice_id: Optional[str] = None,
        transaction_id: Optional[str] = None
    ) -> Optional[ReconciliationMatch]:
        for item in self._items.values():
            if not item.is_active:
                continue
            if invoice_id and item.invoice_id == invoice_id:
                return item
            if transaction_id and item.transaction_id == transaction_id:
                return item
        return None


class InMemoryUnitOfWork(ReconciliationUnitOfWork):
    """Atomic confirm/revert across the three in-memory stores"""

    def __init__(
        self,
        transactions: InMemoryTransactionStore,
        invoices: InMemoryInvoiceStore,
        matches: InMemoryMatchStore,
        lock: asyncio.Lock
    ):
        self.transactions = transactions
        self.invoices = invoices
        self.matches = matches
        self._lock = lock

    async def confirm(
        self,
        match: ReconciliationMatch,
        invoice_status: InvoiceStatus = InvoiceStatus.PAID
    ) -> ReconciliationMatch:
        async with self._lock:
            invoice = self.invoices._require(match.invoice_id)
            transaction = self.transactions._require(match.transaction_id)

            if not invoice.is_matchable:
                raise ConflictError(
                    f"Invoice {invoice.id} is {invoice.status.value} and cannot be matched",
                    {"invoice_id": invoice.id, "status": invoice.status.value}
                )
            if transaction.reconciliation_status != ReconciliationStatus.PENDING:
                raise ConflictError(
                    f"Transaction {transaction.id} is {transaction.reconciliation_status.value}",
                    {"transaction_id": transaction.id, "status": transaction.reconciliation_status.value}
                )
            if self.matches._find_active(invoice_id=invoice.id):
                raise ConflictError("Invoice already has an active match", {"invoice_id": invoice.id})
            if self.matches._find_active(transaction_id=transaction.id):
                raise ConflictError(
                    "Transaction already has an active match", {"transaction_id": transaction.id}
                )

            now = utc_now()
            stored = self.matches._find_pair(match.invoice_id, match.transaction_id)
            if stored and stored.status == MatchStatus.REJECTED and match.decided_by != DecidedBy.HUMAN:
                raise ConflictError(
                    "Rejected pair can only be confirmed again by a human", {"match_id": stored.id}
                )
            confirmed = match.model_copy(deep=True, update={
                "id": stored.id if stored else match.id,
                "created_at": stored.created_at if stored else match.created_at,
                "status": MatchStatus.CONFIRMED,
                "previous_invoice_status": invoice.status,
                "decided_at": now,
            })
            self.matches._items[confirmed.id] = confirmed

            InMemoryTransactionStore._apply_status(transaction, ReconciliationStatus.MATCHED, invoice.id)
            invoice.status = invoice_status

            return _copy(confirmed)

    async def revert(
        self,
        match: ReconciliationMatch,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        async with self._lock:
            stored = self.matches._require(match.id)
            if not stored.is_active:
                raise ConflictError(
                    f"Match {stored.id} is {stored.status.value}, not confirmed",
                    {"match_id": stored.id, "status": stored.status.value}
                )

            stored.status = MatchStatus.REJECTED
            stored.decider_id = decider_id or stored.decider_id
            stored.notes = notes or stored.notes
            stored.decided_at = utc_now()

            transaction = self.transactions._items.get(stored.transaction_id)
            if transaction:
                InMemoryTransactionStore._apply_status(transaction, ReconciliationStatus.PENDING, None)

            invoice = self.invoices._items.get(stored.invoice_id)
            if invoice:
                invoice.status = stored.previous_invoice_status or InvoiceStatus.PENDING

            return _copy(stored)


def create_memory_stores() -> Stores:
    """Build a consistent set of in-memory stores sharing one lock."""
    lock = asyncio.Lock()
    transactions = InMemoryTransactionStore(lock)
    invoices = InMemoryInvoiceStore(lock)
    matches = InMemoryMatchStore(lock)
    return Stores(
        transactions=transactions,
        invoices=invoices,
        matches=matches,
        unit_of_work=InMemoryUnitOfWork(transactions, invoices, matches, lock),
    )
