"""
Reconciliation Service

Core business logic for reconciliation decisions:
- Confirming matches (human or automatic)
- Rejecting proposals and unmatching confirmed links
- Ignoring / un-ignoring transactions
- Batch confirmation of the auto-matchable sweep
- Audit logging

Every operation is fail-fast and all-or-nothing. The multi-record writes
go through the store's unit of work, which re-checks the one-active-match
rule at write time so that concurrent confirmations have one winner.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import get_settings
from database.repositories import (
    InvoiceStore, MatchStore, ReconciliationUnitOfWork, Stores, TransactionStore
)
from models.enums import (
    DecidedBy, MatchConfidence, MatchStatus, ReconciliationStatus
)
from models.schemas import BankTransaction, Invoice, ReconciliationMatch
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.matching_rules.invoice_rules import InvoiceMatchingRules, invoice_rules
from reconciliation.services.matching_service import MatchingService, MatchSuggestion
from reconciliation.state_machine import (
    ensure_match_reconfirmation,
    ensure_match_transition,
    ensure_transaction_transition
)
from utils.errors import ConflictError, NotFoundError, ReconciliationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class BatchConfirmResult:
    """Outcome of confirming a list of suggestions."""
    succeeded: int = 0
    failed: int = 0
    matches: List[ReconciliationMatch] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "matches": [m.to_dict() for m in self.matches],
            "errors": self.errors,
        }


class ReconciliationService:
    """
    Applies reconciliation decisions to invoices, transactions and matches.
    """

    MANUAL_MATCH_SCORE = 100

    def __init__(
        self,
        invoices: InvoiceStore,
        transactions: TransactionStore,
        matches: MatchStore,
        unit_of_work: ReconciliationUnitOfWork,
        rules: Optional[InvoiceMatchingRules] = None
    ):
        self.invoices = invoices
        self.transactions = transactions
        self.matches = matches
        self.unit_of_work = unit_of_work
        self.rules = rules or invoice_rules

    @classmethod
    def from_stores(cls, stores: Stores, rules: Optional[InvoiceMatchingRules] = None) -> "ReconciliationService":
        return cls(stores.invoices, stores.transactions, stores.matches, stores.unit_of_work, rules)

    # ==================== CONFIRM ====================

    async def confirm_match(
        self,
        invoice_id: str,
        transaction_id: str,
        decided_by: DecidedBy = DecidedBy.HUMAN,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None,
        score: Optional[int] = None,
        score_breakdown: Optional[Dict[str, int]] = None
    ) -> ReconciliationMatch:
        """
        Link a transaction to the invoice it pays.

        Human decisions default to score 100 with MANUAL confidence.
        System decisions must carry a score of at least the auto-match
        threshold. A stored PROPOSED record for the pair is promoted in place;
        a stored REJECTED record is reused only for a human decision.

        Effects: match CONFIRMED, transaction MATCHED (linked to the
        invoice), invoice PAID.

        Raises:
            ValidationError: Blank ids, or a system decision below threshold
            NotFoundError: Unknown invoice or transaction
            ConflictError: Invoice not matchable, transaction not pending,
                either side already has an active match, or a system
                decision on a pair that was rejected
        """
        if not invoice_id or not invoice_id.strip():
            raise ValidationError("Invoice ID is required")
        if not transaction_id or not transaction_id.strip():
            raise ValidationError("Transaction ID is required")

        invoice = await self._get_invoice(invoice_id)
        transaction = await self._get_transaction(transaction_id)

        if not invoice.is_matchable:
            raise ConflictError(
                f"Invoice {invoice.id} is {invoice.status.value} and cannot be matched",
                {"invoice_id": invoice.id, "status": invoice.status.value}
            )
        ensure_transaction_transition(
            transaction.id, transaction.reconciliation_status, ReconciliationStatus.MATCHED
        )

        if await self.matches.find_active_for_invoice(invoice.id):
            raise ConflictError("Invoice already has an active match", {"invoice_id": invoice.id})
        if await self.matches.find_active_for_transaction(transaction.id):
            raise ConflictError(
                "Transaction already has an active match", {"transaction_id": transaction.id}
            )

        score, confidence = self._decision_score(decided_by, score)

        stored = await self.matches.get_by_pair(invoice.id, transaction.id)
        if stored:
            ensure_match_reconfirmation(stored.id, stored.status, decided_by)

        match = ReconciliationMatch(
            invoice_id=invoice.id,
            transaction_id=transaction.id,
            score=score,
            confidence=confidence,
            status=MatchStatus.CONFIRMED,
            decided_by=decided_by,
            decider_id=decider_id,
            notes=notes,
            score_breakdown=score_breakdown or (stored.score_breakdown if stored else {}),
        )

        confirmed = await self.unit_of_work.confirm(match)

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_CONFIRMED,
            {
                "score": confirmed.score,
                "confidence": confirmed.confidence.value,
                "decided_by": decided_by.value,
                "promoted_proposal": bool(stored and stored.status == MatchStatus.PROPOSED),
            },
            invoice_id=invoice.id,
            transaction_id=transaction.id,
            match_id=confirmed.id,
            actor=decider_id or decided_by.value
        )
        return confirmed

    async def confirm_proposed(
        self,
        match_id: str,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        """Human approval of a PROPOSED match; keeps the proposal's score."""
        match = await self._get_match(match_id)
        ensure_match_transition(match.id, match.status, MatchStatus.CONFIRMED)

        return await self.confirm_match(
            match.invoice_id,
            match.transaction_id,
            decided_by=DecidedBy.HUMAN,
            decider_id=decider_id,
            notes=notes,
            score=match.score,
            score_breakdown=match.score_breakdown
        )

    def _decision_score(self, decided_by: DecidedBy, score: Optional[int]):
        if score is not None and not 0 <= score <= 100:
            raise ValidationError("Score must be between 0 and 100", {"score": score})

        if decided_by == DecidedBy.HUMAN:
            return (self.MANUAL_MATCH_SCORE if score is None else score), MatchConfidence.MANUAL

        threshold = get_settings().AUTO_MATCH_MIN_SCORE
        if score is None or score < threshold:
            raise ValidationError(
                f"Automatic confirmation requires a score of at least {threshold}",
                {"score": score, "threshold": threshold}
            )
        return score, self.rules.classify(score)

    # ==================== REJECT / UNMATCH ====================

    async def reject_match(
        self,
        match_id: str,
        decider_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> ReconciliationMatch:
        """
        Reject a proposal. A confirmed match is unmatched instead, which
        also releases its transaction and invoice.
        """
        match = await self._get_match(match_id)

        if match.status == MatchStatus.CONFIRMED:
            return await self.unmatch(match.id, decider_id=decider_id, notes=reason)

        ensure_match_transition(match.id, match.status, MatchStatus.REJECTED)
        rejected = await self.matches.set_status(
            match.id, MatchStatus.REJECTED, decider_id=decider_id, notes=reason
        )

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_REJECTED,
            {"reason": reason, "score": match.score},
            invoice_id=match.invoice_id,
            transaction_id=match.transaction_id,
            match_id=match.id,
            actor=decider_id or DecidedBy.HUMAN.value
        )
        return rejected

    async def unmatch(
        self,
        match_id: str,
        decider_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReconciliationMatch:
        """
        Undo a confirmed match: transaction back to PENDING (unlinked),
        invoice back to the status it had before the match.

        Raises:
            NotFoundError: Unknown match
            ConflictError: The match is not active
        """
        match = await self._get_match(match_id)
        if not match.is_active:
            raise ConflictError(
                f"Match {match.id} is {match.status.value}, not confirmed",
                {"match_id": match.id, "status": match.status.value}
            )

        reverted = await self.unit_of_work.revert(match, decider_id=decider_id, notes=notes)

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_UNMATCHED,
            {
                "restored_invoice_status": (
                    match.previous_invoice_status.value if match.previous_invoice_status else None
                ),
                "notes": notes,
            },
            invoice_id=match.invoice_id,
            transaction_id=match.transaction_id,
            match_id=match.id,
            actor=decider_id or DecidedBy.HUMAN.value
        )
        return reverted

    # ==================== IGNORE ====================

    async def ignore(self, transaction_id: str, decider_id: Optional[str] = None) -> BankTransaction:
        """
        Exclude a transaction from matching. Ignoring an ignored transaction
        is a no-op; a matched one must be unmatched first.
        """
        transaction = await self._get_transaction(transaction_id)

        if transaction.reconciliation_status == ReconciliationStatus.IGNORED:
            return transaction

        ensure_transaction_transition(
            transaction.id, transaction.reconciliation_status, ReconciliationStatus.IGNORED
        )
        updated = await self.transactions.set_status(transaction.id, ReconciliationStatus.IGNORED)

        log_reconciliation_event(
            ReconciliationAuditEvent.TRANSACTION_IGNORED,
            {},
            transaction_id=transaction.id,
            actor=decider_id or DecidedBy.HUMAN.value
        )
        return updated

    async def unignore(self, transaction_id: str, decider_id: Optional[str] = None) -> BankTransaction:
        """Return an ignored transaction to PENDING."""
        transaction = await self._get_transaction(transaction_id)

        if transaction.reconciliation_status != ReconciliationStatus.IGNORED:
            raise ConflictError(
                f"Transaction {transaction.id} is {transaction.reconciliation_status.value}, not ignored",
                {"transaction_id": transaction.id, "status": transaction.reconciliation_status.value}
            )

        updated = await self.transactions.set_status(transaction.id, ReconciliationStatus.PENDING)

        log_reconciliation_event(
            ReconciliationAuditEvent.TRANSACTION_UNIGNORED,
            {},
            transaction_id=transaction.id,
            actor=decider_id or DecidedBy.HUMAN.value
        )
        return updated

    # ==================== BATCH ====================

    async def confirm_batch(self, suggestions: List[MatchSuggestion]) -> BatchConfirmResult:
        """
        Confirm suggestions one after another as system decisions.

        Confirmation is sequential because each one changes what the next
        may claim. Failures (typically a transaction already claimed by an
        earlier invoice in the batch) are counted, not raised.
        """
        result = BatchConfirmResult()

        for suggestion in suggestions:
            try:
                match = await self.confirm_match(
                    suggestion.invoice_id,
                    suggestion.transaction_id,
                    decided_by=DecidedBy.SYSTEM,
                    score=suggestion.score,
                    score_breakdown=suggestion.breakdown.to_dict()
                )
            except ReconciliationError as e:
                result.failed += 1
                result.errors.append({
                    "invoice_id": suggestion.invoice_id,
                    "transaction_id": suggestion.transaction_id,
                    "error": e.code,
                    "message": e.message,
                })
                logger.warning(
                    f"Auto-confirm of invoice {suggestion.invoice_id} / "
                    f"transaction {suggestion.transaction_id} failed: {e.message}"
                )
                continue

            result.succeeded += 1
            result.matches.append(match)

        log_reconciliation_event(
            ReconciliationAuditEvent.BATCH_CONFIRMED,
            {"submitted": len(suggestions), "succeeded": result.succeeded, "failed": result.failed}
        )
        return result

    async def auto_match(self, account_id: Optional[str] = None) -> BatchConfirmResult:
        """Sweep all unmatched invoices and confirm the high-confidence matches."""
        matching = MatchingService(self.invoices, self.transactions, self.matches, self.rules)
        suggestions = await matching.get_auto_matchable(account_id=account_id)
        return await self.confirm_batch(suggestions)

    # ==================== LOOKUPS ====================

    async def _get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _get_transaction(self, transaction_id: str) -> BankTransaction:
        if not transaction_id or not transaction_id.strip():
            raise ValidationError("Transaction ID is required")

        transaction = await self.transactions.get(transaction_id)
        if not transaction:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def _get_match(self, match_id: str) -> ReconciliationMatch:
        if not match_id or not match_id.strip():
            raise ValidationError("Match ID is required")

        match = await self.matches.get(match_id)
        if not match:
            raise NotFoundError("Match", match_id)
        return match
