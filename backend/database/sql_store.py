"""
Reconciliation Core - SQLAlchemy Stores

Async implementations of the store contracts over the tables in
database/models.py. Each store wraps one AsyncSession (one request).

Driver errors never leave this module: IntegrityError becomes
ConflictError, any other SQLAlchemyError becomes StoreError, with the
original exception kept as __cause__.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import (
    DecidedBy, ReconciliationStatus, InvoiceStatus, MatchStatus, TransactionCategory,
    MATCHABLE_INVOICE_STATUSES
)
from models.schemas import BankTransaction, Invoice, ReconciliationMatch, utc_now
from utils.errors import ConflictError, NotFoundError, ReconciliationError, StoreError
from .models import BankTransactionDB, InvoiceDB, ReconciliationMatchDB
from .repositories import (
    CandidateQuery, TransactionStore, InvoiceStore, MatchStore,
    ReconciliationUnitOfWork, Stores
)

logger = logging.getLogger(__name__)


class _SQLStore:
    """Shared session handling and error translation"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except ReconciliationError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Integrity violation during {operation}: {e.orig}")
            raise ConflictError(f"Conflicting write during {operation}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Database error during {operation}: {e}")
            raise StoreError(f"Failed to {operation}") from e


# ==================== TRANSACTIONS ====================

class SQLTransactionStore(_SQLStore, TransactionStore):

    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        async with self._guard("load transaction"):
            row = await self.db.get(BankTransactionDB, transaction_id)
            return row.to_domain() if row else None

    async def find_by_fingerprint(self, account_id: str, fingerprint: str) -> Optional[BankTransaction]:
        async with self._guard("look up fingerprint"):
            result = await self.db.execute(
                select(BankTransactionDB).where(
                    BankTransactionDB.account_id == account_id,
                    BankTransactionDB.external_fingerprint == fingerprint
                )
            )
            row = result.scalar_one_or_none()
            return row.to_domain() if row else None

    async def add_many(self, transactions: List[BankTransaction]) -> List[BankTransaction]:
        if not transactions:
            return []

        async with self._guard("insert transactions"):
            self.db.add_all([BankTransactionDB.from_domain(t) for t in transactions])
            await self.db.commit()

        logger.info(f"Inserted {len(transactions)} bank transactions")
        return transactions

    async def update_category(
        self,
        transaction_id: str,
        category: Optional[TransactionCategory],
        confidence: Optional[int]
    ) -> BankTransaction:
        async with self._guard("update category"):
            row = await self._require(transaction_id)
            row.suggested_category = category.value if category else None
            row.category_confidence = confidence
            row.updated_at = utc_now()
            await self.db.commit()
            return row.to_domain()

    async def find_candidates(self, query: CandidateQuery) -> List[BankTransaction]:
        conditions = [
            BankTransactionDB.reconciliation_status == query.status.value,
            BankTransactionDB.execution_date >= query.date_from,
            BankTransactionDB.execution_date <= query.date_to,
        ]
        if query.expenses_only:
            conditions.extend([
                BankTransactionDB.amount < 0,
                BankTransactionDB.amount >= -query.amount_max,
                BankTransactionDB.amount <= -query.amount_min,
            ])
        else:
            conditions.append(func.abs(BankTransactionDB.amount).between(query.amount_min, query.amount_max))
        if query.account_id:
            conditions.append(BankTransactionDB.account_id == query.account_id)

        async with self._guard("find candidate transactions"):
            result = await self.db.execute(
                select(BankTransactionDB).where(*conditions).order_by(BankTransactionDB.execution_date)
            )
            return [row.to_domain() for row in result.scalars().all()]

    async def set_status(
        self,
        transaction_id: str,
        status: ReconciliationStatus,
        linked_invoice_id: Optional[str] = None
    ) -> BankTransaction:
        async with self._guard("update transaction status"):
            row = await self._require(transaction_id)
            _apply_transaction_status(row, status, linked_invoice_id)
            await self.db.commit()
            return row.to_domain()

    async def count_by_status(self, account_id: Optional[str] = None) -> Dict[str, int]:
        stmt = select(
            BankTransactionDB.reconciliation_status, func.count(BankTransactionDB.id)
        ).group_by(BankTransactionDB.reconciliation_status)
        if account_id:
            stmt = stmt.where(BankTransactionDB.account_id == account_id)

        async with self._guard("count transactions"):
            result = await self.db.execute(stmt)
            counts = {status: count for status, count in result.all()}

        return {status.value: counts.get(status.value, 0) for status in ReconciliationStatus}

    async def _require(self, transaction_id: str) -> BankTransactionDB:
        row = await self.db.get(BankTransactionDB, transaction_id)
        if not row:
            raise NotFoundError("Transaction", transaction_id)
        return row


def _apply_transaction_status(
    row: BankTransactionDB,
    status: ReconciliationStatus,
    linked_invoice_id: Optional[str]
):
    row.reconciliation_status = status.value
    row.linked_invoice_id = linked_invoice_id if status == ReconciliationStatus.MATCHED else None
    row.updated_at = utc_now()


# ==================== INVOICES ====================

class SQLInvoiceStore(_SQLStore, InvoiceStore):

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        async with self._guard("load invoice"):
            row = await self.db.get(InvoiceDB, invoice_id)
            return row.to_domain() if row else None

    async def add(self, invoice: Invoice) -> Invoice:
        async with self._guard("register invoice"):
            row = await self.db.merge(InvoiceDB.from_domain(invoice))
            await self.db.commit()
            return row.to_domain()

    async def list_matchable(self) -> List[Invoice]:
        async with self._guard("list matchable invoices"):
            result = await self.db.execute(
                select(InvoiceDB)
                .where(InvoiceDB.status.in_([s.value for s in MATCHABLE_INVOICE_STATUSES]))
                .order_by(InvoiceDB.due_date, InvoiceDB.id)
            )
            return [row.to_domain() for row in result.scalars().all()]

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        async with self._guard("update invoice status"):
            row = await self.db.get(InvoiceDB, invoice_id)
            if not row:
                raise NotFoundError("Invoice", invoice_id)
            row.status = status.value
            await self.db.commit()
            return row.to_domain()


# ==================== MATCHES ====================

class SQLMatchStore(_SQLStore, MatchStore):

    async def get(self, match_id: str) -> Optional[ReconciliationMatch]:
        async with self._guard("load match"):
            row = await self.db.get(ReconciliationMatchDB, match_id)
            return row.to_domain() if row else None

    async def get_by_pair(self, invoice_id: str, transaction_id: str) -> Optional[ReconciliationMatch]:
        async with self._guard("load match"):
            row = await _find_pair(self.db, invoice_id, transaction_id)
            return row.to_domain() if row else None

    async def find_active_for_invoice(self, invoice_id: str) -> Optional[ReconciliationMatch]:
        return await self._find_active(ReconciliationMatchDB.invoice_id == invoice_id)

    async def find_active_for_transaction(self, transaction_id: str) -> Optional[ReconciliationMatch]:
        return await self._find_active(ReconciliationMatchDB.transaction_id == transaction_id)

    async def add(self, match: ReconciliationMatch) -> ReconciliationMatch:
        async with self._guard("insert match"):
            self.db.add(ReconciliationMatchDB.from_domain(match))
            await self.db.commit()
        return match

    async def set_status(
        self,
        match_id: str,
        status: MatchStatus,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        async with self._guard("update match status"):
            row = await self.db.get(ReconciliationMatchDB, match_id)
            if not row:
                raise NotFoundError("Match", match_id)
            row.status = status.value
            row.decider_id = decider_id or row.decider_id
            row.notes = notes or row.notes
            row.decided_at = utc_now()
            await self.db.commit()
            return row.to_domain()

    async def list_for_invoice(self, invoice_id: str) -> List[ReconciliationMatch]:
        async with self._guard("list matches"):
            result = await self.db.execute(
                select(ReconciliationMatchDB)
                .where(ReconciliationMatchDB.invoice_id == invoice_id)
                .order_by(ReconciliationMatchDB.created_at)
            )
            return [row.to_domain() for row in result.scalars().all()]

    async def _find_active(self, condition) -> Optional[ReconciliationMatch]:
        async with self._guard("find active match"):
            result = await self.db.execute(
                select(ReconciliationMatchDB).where(
                    condition,
                    ReconciliationMatchDB.status == MatchStatus.CONFIRMED.value
                )
            )
            row = result.scalars().first()
            return row.to_domain() if row else None


async def _find_pair(db: AsyncSession, invoice_id: str, transaction_id: str) -> Optional[ReconciliationMatchDB]:
    result = await db.execute(
        select(ReconciliationMatchDB).where(
            ReconciliationMatchDB.invoice_id == invoice_id,
            ReconciliationMatchDB.transaction_id == transaction_id
        )
    )
    return result.scalar_one_or_none()


# ==================== UNIT OF WORK ====================

class SQLUnitOfWork(_SQLStore, ReconciliationUnitOfWork):
    """
    Confirm/revert in a single database transaction. Invoice and transaction
    rows are locked (SELECT ... FOR UPDATE); the partial unique indexes on
    reconciliation_matches catch whatever the locks do not.
    """

    async def confirm(
        self,
        match: ReconciliationMatch,
        invoice_status: InvoiceStatus = InvoiceStatus.PAID
    ) -> ReconciliationMatch:
        async with self._guard("confirm match"):
            invoice = await self.db.get(InvoiceDB, match.invoice_id, with_for_update=True)
            if not invoice:
                raise NotFoundError("Invoice", match.invoice_id)
            transaction = await self.db.get(BankTransactionDB, match.transaction_id, with_for_update=True)
            if not transaction:
                raise NotFoundError("Transaction", match.transaction_id)

            if InvoiceStatus(invoice.status) not in MATCHABLE_INVOICE_STATUSES:
                raise ConflictError(
                    f"Invoice {invoice.id} is {invoice.status} and cannot be matched",
                    {"invoice_id": invoice.id, "status": invoice.status}
                )
            if transaction.reconciliation_status != ReconciliationStatus.PENDING.value:
                raise ConflictError(
                    f"Transaction {transaction.id} is {transaction.reconciliation_status}",
                    {"transaction_id": transaction.id, "status": transaction.reconciliation_status}
                )

            result = await self.db.execute(
                select(ReconciliationMatchDB).where(
                    ReconciliationMatchDB.status == MatchStatus.CONFIRMED.value,
                    or_(
                        ReconciliationMatchDB.invoice_id == invoice.id,
                        ReconciliationMatchDB.transaction_id == transaction.id
                    )
                )
            )
            if result.scalars().first():
                raise ConflictError(
                    "Invoice or transaction already has an active match",
                    {"invoice_id": invoice.id, "transaction_id": transaction.id}
                )

            row = await _find_pair(self.db, invoice.id, transaction.id)
            if (
                row is not None
                and row.status == MatchStatus.REJECTED.value
                and match.decided_by != DecidedBy.HUMAN
            ):
                raise ConflictError(
                    "Rejected pair can only be confirmed again by a human", {"match_id": row.id}
                )

            if row is None:
                row = ReconciliationMatchDB.from_domain(match)
                self.db.add(row)
            else:
                row.score = match.score
                row.confidence = match.confidence.value
                row.decided_by = match.decided_by.value
                row.decider_id = match.decider_id
                row.notes = match.notes
                row.score_breakdown = match.score_breakdown

            row.status = MatchStatus.CONFIRMED.value
            row.previous_invoice_status = invoice.status
            row.decided_at = utc_now()

            _apply_transaction_status(transaction, ReconciliationStatus.MATCHED, invoice.id)
            invoice.status = invoice_status.value

            await self.db.commit()
            return row.to_domain()

    async def revert(
        self,
        match: ReconciliationMatch,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        async with self._guard("revert match"):
            row = await self.db.get(ReconciliationMatchDB, match.id, with_for_update=True)
            if not row:
                raise NotFoundError("Match", match.id)
            if row.status != MatchStatus.CONFIRMED.value:
                raise ConflictError(
                    f"Match {row.id} is {row.status}, not confirmed",
                    {"match_id": row.id, "status": row.status}
                )

            row.status = MatchStatus.REJECTED.value
            row.decider_id = decider_id or row.decider_id
            row.notes = notes or row.notes
            row.decided_at = utc_now()

            transaction = await self.db.get(BankTransactionDB, row.transaction_id, with_for_update=True)
            if transaction:
                _apply_transaction_status(transaction, ReconciliationStatus.PENDING, None)

            invoice = await self.db.get(InvoiceDB, row.invoice_id, with_for_update=True)
            if invoice:
                invoice.status = row.previous_invoice_status or InvoiceStatus.PENDING.value

            await self.db.commit()
            return row.to_domain()


def create_sql_stores(db: AsyncSession) -> Stores:
    """Bind all stores to one session."""
    return Stores(
        transactions=SQLTransactionStore(db),
        invoices=SQLInvoiceStore(db),
        matches=SQLMatchStore(db),
        unit_of_work=SQLUnitOfWork(db),
    )
