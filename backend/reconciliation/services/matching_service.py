"""
Matching Service

Finds and ranks the bank transactions most likely to pay an invoice:
- Single invoice suggestions and best match
- Sweep over every unmatched invoice
- Auto-matchable (high confidence) selection
- Persisting suggestions as PROPOSED matches for review

Pairs a human has rejected are never suggested again. Nothing here
changes reconciliation state; confirmations go through
ReconciliationService.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import get_settings
from database.repositories import InvoiceStore, MatchStore, Stores, TransactionStore
from models.enums import DecidedBy, MatchConfidence, MatchStatus, SuggestedAction
from models.schemas import BankTransaction, Invoice, ReconciliationMatch
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.matching_rules.invoice_rules import (
    InvoiceMatchingRules,
    ScoreBreakdown,
    invoice_rules
)
from utils.errors import ConflictError, NotFoundError, ReconciliationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class MatchSuggestion:
    """A scored candidate payment for an invoice."""
    invoice_id: str
    transaction_id: str
    score: int
    confidence: MatchConfidence
    suggested_action: SuggestedAction
    breakdown: ScoreBreakdown
    day_distance: Optional[int]
    transaction: Optional[BankTransaction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "score": self.score,
            "confidence": self.confidence.value,
            "suggested_action": self.suggested_action.value,
            "score_breakdown": self.breakdown.to_dict(),
            "day_distance": self.day_distance,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


class MatchingService:
    """Suggests invoice/transaction matches"""

    def __init__(
        self,
        invoices: InvoiceStore,
        transactions: TransactionStore,
        matches: MatchStore,
        rules: Optional[InvoiceMatchingRules] = None
    ):
        self.invoices = invoices
        self.transactions = transactions
        self.matches = matches
        self.rules = rules or invoice_rules

    @classmethod
    def from_stores(cls, stores: Stores, rules: Optional[InvoiceMatchingRules] = None) -> "MatchingService":
        return cls(stores.invoices, stores.transactions, stores.matches, rules)

    async def suggest_for_invoice(
        self,
        invoice_id: str,
        min_score: Optional[int] = None,
        max_suggestions: Optional[int] = None,
        account_id: Optional[str] = None
    ) -> List[MatchSuggestion]:
        """
        Rank candidate transactions for one invoice.

        Args:
            invoice_id: Invoice to match
            min_score: Drop suggestions below this score (default 30)
            max_suggestions: Keep at most this many (default 10)
            account_id: Only consider transactions of this account

        Returns:
            Suggestions ordered by score, then date distance, then
            transaction id. Empty when the invoice is not matchable or
            already has an active match.

        Raises:
            NotFoundError: Unknown invoice
        """
        invoice = await self._get_invoice(invoice_id)
        return await self._suggest(invoice, min_score, max_suggestions, account_id)

    async def get_best_match(
        self,
        invoice_id: str,
        account_id: Optional[str] = None
    ) -> Optional[MatchSuggestion]:
        """Top suggestion of at least medium confidence, or None."""
        suggestions = await self.suggest_for_invoice(
            invoice_id,
            min_score=get_settings().BEST_MATCH_MIN_SCORE,
            max_suggestions=1,
            account_id=account_id
        )
        return suggestions[0] if suggestions else None

    async def suggest_for_all_unmatched(
        self,
        min_score: Optional[int] = None,
        max_per_invoice: Optional[int] = None,
        account_id: Optional[str] = None
    ) -> Dict[str, List[MatchSuggestion]]:
        """
        Suggestions for every matchable invoice.

        Invoices without suggestions are left out. An invoice whose lookup
        fails is logged and skipped; the sweep continues.
        """
        invoices = await self.invoices.list_matchable()

        # One invoice at a time: SQL stores share a single AsyncSession
        results: Dict[str, List[MatchSuggestion]] = {}
        for invoice in invoices:
            try:
                suggestions = await self._suggest(invoice, min_score, max_per_invoice, account_id)
            except ReconciliationError as e:
                logger.warning(f"Skipping invoice {invoice.id} in sweep: {e.message}")
                continue
            if suggestions:
                results[invoice.id] = suggestions

        log_reconciliation_event(
            ReconciliationAuditEvent.CANDIDATES_FOUND,
            {"invoices": len(invoices), "with_suggestions": len(results)}
        )
        return results

    async def get_auto_matchable(self, account_id: Optional[str] = None) -> List[MatchSuggestion]:
        """Best suggestion per invoice, high confidence only."""
        sweep = await self.suggest_for_all_unmatched(
            min_score=get_settings().AUTO_MATCH_MIN_SCORE,
            max_per_invoice=1,
            account_id=account_id
        )

        auto_matchable = [
            suggestions[0] for suggestions in sweep.values()
            if suggestions[0].confidence == MatchConfidence.HIGH
        ]
        auto_matchable.sort(key=lambda s: (-s.score, s.invoice_id))
        return auto_matchable

    async def propose_matches(
        self,
        invoice_id: str,
        min_score: Optional[int] = None,
        max_suggestions: Optional[int] = None,
        account_id: Optional[str] = None
    ) -> List[ReconciliationMatch]:
        """
        Store the suggestions of an invoice as PROPOSED matches.

        Idempotent per (invoice, transaction): an existing record for the
        pair, whatever its status, is returned instead of a new one.
        """
        suggestions = await self.suggest_for_invoice(
            invoice_id, min_score, max_suggestions, account_id
        )

        proposed: List[ReconciliationMatch] = []
        for suggestion in suggestions:
            existing = await self.matches.get_by_pair(suggestion.invoice_id, suggestion.transaction_id)
            if existing:
                proposed.append(existing)
                continue

            match = ReconciliationMatch(
                invoice_id=suggestion.invoice_id,
                transaction_id=suggestion.transaction_id,
                score=suggestion.score,
                confidence=suggestion.confidence,
                status=MatchStatus.PROPOSED,
                decided_by=DecidedBy.SYSTEM,
                score_breakdown=suggestion.breakdown.to_dict(),
            )
            try:
                proposed.append(await self.matches.add(match))
            except ConflictError:
                # Proposed concurrently by another sweep
                proposed.append(
                    await self.matches.get_by_pair(suggestion.invoice_id, suggestion.transaction_id)
                )
                continue

            log_reconciliation_event(
                ReconciliationAuditEvent.MATCH_PROPOSED,
                {"score": match.score, "confidence": match.confidence.value},
                invoice_id=match.invoice_id,
                transaction_id=match.transaction_id,
                match_id=match.id
            )

        return proposed

    # ==================== INTERNALS ====================

    async def _get_invoice(self, invoice_id: str) -> Invoice:
        if not invoice_id or not invoice_id.strip():
            raise ValidationError("Invoice ID is required")

        invoice = await self.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _suggest(
        self,
        invoice: Invoice,
        min_score: Optional[int],
        max_suggestions: Optional[int],
        account_id: Optional[str]
    ) -> List[MatchSuggestion]:
        settings = get_settings()
        min_score = settings.MATCH_MIN_SCORE if min_score is None else min_score
        max_suggestions = settings.MATCH_MAX_SUGGESTIONS if max_suggestions is None else max_suggestions

        if not invoice.is_matchable:
            logger.info(f"Invoice {invoice.id} is {invoice.status.value}, no suggestions")
            return []

        if invoice.total <= 0:
            logger.info(f"Invoice {invoice.id} has non-positive total {invoice.total}, no suggestions")
            return []

        if await self.matches.find_active_for_invoice(invoice.id):
            return []

        candidates = await self.transactions.find_candidates(
            self.rules.candidate_query(invoice, account_id)
        )
        rejected = {
            match.transaction_id
            for match in await self.matches.list_for_invoice(invoice.id)
            if match.status == MatchStatus.REJECTED
        }

        scored = []
        for transaction in candidates:
            if transaction.id in rejected:
                continue
            breakdown = self.rules.score(invoice, transaction)
            if breakdown.total >= min_score:
                scored.append((breakdown, transaction))

        scored.sort(key=lambda item: self.rules.rank_key(item[0].total, invoice, item[1]))

        return [
            MatchSuggestion(
                invoice_id=invoice.id,
                transaction_id=transaction.id,
                score=breakdown.total,
                confidence=self.rules.classify(breakdown.total),
                suggested_action=self.rules.suggested_action(breakdown.total),
                breakdown=breakdown,
                day_distance=self.rules.day_distance(invoice, transaction),
                transaction=transaction,
            )
            for breakdown, transaction in scored[:max_suggestions]
        ]
