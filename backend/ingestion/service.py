"""
Bank Statement Ingestion - Import Service

Provides business logic for:
- Statement import (parse, fingerprint, deduplicate, persist)
- Import preview without persistence
- Concurrent import of several statements

Per-row problems never abort an import: unparsable rows become warnings
and per-row store failures are counted in ``errors``. Only a statement with
no usable row (ParseError) or a failing bulk insert aborts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from config import get_settings
from database.repositories import TransactionStore
from logging_config import set_import_context, clear_import_context
from models.schemas import BankTransaction, CandidateTransaction, generate_uuid
from utils.errors import ConflictError, ReconciliationError, StoreError, ValidationError
from .fingerprint import fingerprint
from .statement_parser import StatementParser, ParseWarning

logger = logging.getLogger(__name__)


# ==================== RESULTS ====================

@dataclass
class ImportOptions:
    """
    How an import treats rows it has already seen.

    Duplicates are skipped by default. ``update_existing`` refreshes the
    stored category suggestion instead. ``strict`` (or turning
    ``skip_duplicates`` off without ``update_existing``) rejects the whole
    statement with ConflictError on the first duplicate.
    """
    encoding: Optional[str] = None
    skip_duplicates: bool = True
    update_existing: bool = False
    strict: bool = False

    def __post_init__(self):
        if self.strict and self.update_existing:
            raise ValidationError("strict and update_existing cannot be combined")

    @property
    def rejects_duplicates(self) -> bool:
        return self.strict or (not self.skip_duplicates and not self.update_existing)


@dataclass
class ImportResult:
    """Statistics of one statement import."""
    statement_id: str
    account_id: str
    total: int = 0
    imported: int = 0
    skipped: int = 0
    updated: int = 0
    errors: int = 0
    transactions: List[BankTransaction] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement_id": self.statement_id,
            "account_id": self.account_id,
            "total": self.total,
            "imported": self.imported,
            "skipped": self.skipped,
            "updated": self.updated,
            "errors": self.errors,
            "transactions": [t.to_dict() for t in self.transactions],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class PreviewResult:
    """What an import would do, without writing anything."""
    total: int
    new_count: int
    duplicate_count: int
    preview: List[Dict[str, Any]]
    warnings: List[ParseWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "new_count": self.new_count,
            "duplicate_count": self.duplicate_count,
            "preview": self.preview,
            "warnings": [w.to_dict() for w in self.warnings],
        }


class ImportAuditEvent:
    """Audit event types for statement imports."""
    STARTED = "ingestion.import_started"
    COMPLETED = "ingestion.import_completed"
    FAILED = "ingestion.import_failed"
    DUPLICATE_REJECTED = "ingestion.duplicate_rejected"


def log_ingestion_event(
    event_type: str,
    statement_id: str,
    account_id: str,
    details: Dict[str, Any],
    success: bool = True
):
    """Log ingestion event for audit trail."""
    log_entry = {
        "event": event_type,
        "statement_id": statement_id,
        "account_id": account_id,
        "details": details,
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if success:
        logger.info(f"Ingestion event: {event_type} for statement {statement_id}", extra=log_entry)
    else:
        logger.warning(f"Ingestion event FAILED: {event_type} for statement {statement_id}", extra=log_entry)


# ==================== IMPORT SERVICE ====================

class StatementImportService:
    """Imports bank statement exports into the transaction store"""

    def __init__(
        self,
        transactions: TransactionStore,
        parser: Optional[StatementParser] = None,
        categorizer=None
    ):
        self.transactions = transactions
        self.parser = parser or StatementParser(categorizer=categorizer)

    async def import_statement(
        self,
        raw: bytes,
        account_id: str,
        options: Optional[ImportOptions] = None
    ) -> ImportResult:
        """
        Import one statement for an account.

        Args:
            raw: Statement file content
            account_id: Account the rows belong to
            options: Duplicate handling and encoding

        Returns:
            ImportResult; ``transactions`` holds the newly created rows

        Raises:
            ValidationError: Blank account id
            ParseError: No usable row in the statement
            ConflictError: Duplicate found while rejecting duplicates
            StoreError: The bulk insert failed
        """
        options = options or ImportOptions()
        account_id = _require_account(account_id)

        statement_id = generate_uuid()
        set_import_context(account_id, statement_id)
        try:
            log_ingestion_event(ImportAuditEvent.STARTED, statement_id, account_id, {"bytes": len(raw)})
            result = await self._import(raw, account_id, statement_id, options)
        except ReconciliationError as e:
            log_ingestion_event(
                ImportAuditEvent.FAILED, statement_id, account_id,
                {"error": e.code, "message": e.message}, success=False
            )
            raise
        finally:
            clear_import_context()

        return result

    async def _import(
        self,
        raw: bytes,
        account_id: str,
        statement_id: str,
        options: ImportOptions
    ) -> ImportResult:
        parsed = self.parser.parse(raw, options.encoding)

        result = ImportResult(
            statement_id=statement_id,
            account_id=account_id,
            total=len(parsed.transactions),
            warnings=parsed.warnings,
        )

        new_transactions: List[BankTransaction] = []
        to_update: List[Tuple[BankTransaction, CandidateTransaction]] = []
        seen_in_file = set()

        for candidate in parsed.transactions:
            fp = fingerprint(candidate)

            if fp in seen_in_file:
                self._on_duplicate(candidate, fp, statement_id, account_id, options)
                logger.warning(f"Row {candidate.row_number} repeats an earlier row of the same statement")
                result.skipped += 1
                continue
            seen_in_file.add(fp)

            try:
                existing = await self.transactions.find_by_fingerprint(account_id, fp)
            except StoreError as e:
                logger.error(f"Duplicate lookup failed for row {candidate.row_number}: {e}")
                result.errors += 1
                continue

            if existing:
                self._on_duplicate(candidate, fp, statement_id, account_id, options)
                # A re-parse without a category keeps the stored suggestion
                if options.update_existing and candidate.category is not None:
                    to_update.append((existing, candidate))
                else:
                    result.skipped += 1
                continue

            new_transactions.append(
                BankTransaction.from_candidate(candidate, account_id=account_id, fingerprint=fp)
            )

        if new_transactions:
            result.transactions = await self.transactions.add_many(new_transactions)
            result.imported = len(result.transactions)

        for existing, candidate in to_update:
            try:
                await self.transactions.update_category(
                    existing.id, candidate.category, candidate.category_confidence
                )
                result.updated += 1
            except StoreError as e:
                logger.error(f"Category refresh failed for transaction {existing.id}: {e}")
                result.errors += 1

        log_ingestion_event(
            ImportAuditEvent.COMPLETED, statement_id, account_id,
            {
                "total": result.total,
                "imported": result.imported,
                "skipped": result.skipped,
                "updated": result.updated,
                "errors": result.errors,
                "warnings": len(result.warnings),
            }
        )
        return result

    def _on_duplicate(
        self,
        candidate: CandidateTransaction,
        fp: str,
        statement_id: str,
        account_id: str,
        options: ImportOptions
    ):
        if not options.rejects_duplicates:
            return

        log_ingestion_event(
            ImportAuditEvent.DUPLICATE_REJECTED, statement_id, account_id,
            {"row": candidate.row_number, "fingerprint": fp}, success=False
        )
        raise ConflictError(
            f"Row {candidate.row_number} was already imported for this account",
            {"row": candidate.row_number, "fingerprint": fp}
        )

    async def preview(
        self,
        raw: bytes,
        account_id: str,
        encoding: Optional[str] = None,
        limit: Optional[int] = None
    ) -> PreviewResult:
        """
        Parse a statement and report which rows are new, without persisting.

        The counts cover every row; ``preview`` holds at most ``limit`` rows.
        """
        account_id = _require_account(account_id)
        limit = limit or get_settings().IMPORT_PREVIEW_LIMIT

        parsed = self.parser.parse(raw, encoding)

        new_count = 0
        duplicate_count = 0
        preview: List[Dict[str, Any]] = []
        seen_in_file = set()

        for candidate in parsed.transactions:
            fp = fingerprint(candidate)
            is_duplicate = (
                fp in seen_in_file
                or await self.transactions.find_by_fingerprint(account_id, fp) is not None
            )
            seen_in_file.add(fp)

            if is_duplicate:
                duplicate_count += 1
            else:
                new_count += 1

            if len(preview) < limit:
                preview.append({
                    "date": candidate.execution_date.isoformat(),
                    "amount": str(candidate.amount),
                    "description": candidate.description,
                    "category": candidate.category.value if candidate.category else None,
                    "is_duplicate": is_duplicate,
                })

        return PreviewResult(
            total=len(parsed.transactions),
            new_count=new_count,
            duplicate_count=duplicate_count,
            preview=preview,
            warnings=parsed.warnings,
        )

    async def import_many(
        self,
        statements: List[Tuple[bytes, str, Optional[ImportOptions]]]
    ) -> List[Union[ImportResult, ReconciliationError]]:
        """
        Import several statements concurrently.

        Fingerprints are scoped per account, so statements of different
        accounts never conflict. A failing statement yields its error in
        place of a result; the others still complete.
        """
        outcomes = await asyncio.gather(
            *(self.import_statement(raw, account_id, options) for raw, account_id, options in statements),
            return_exceptions=True
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, ReconciliationError):
                raise outcome

        imported = sum(o.imported for o in outcomes if isinstance(o, ImportResult))
        logger.info(f"Batch import of {len(statements)} statements: {imported} transactions imported")
        return list(outcomes)


def _require_account(account_id: Optional[str]) -> str:
    if not account_id or not account_id.strip():
        raise ValidationError("Bank account ID is required")
    return account_id.strip()
