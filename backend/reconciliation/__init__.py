"""
Reconciliation Engine Module

Matches imported bank transactions against open invoices:
- Weighted scoring (amount, date, invoice number, reference, vendor)
- Configurable confidence thresholds
- Auto-matching for high confidence
- Suggested matches for review
- Confirm / reject / unmatch / ignore with one active match per side
- Audit trail for all operations
"""

from reconciliation.matching_rules.invoice_rules import (
    InvoiceMatchingRules,
    ScoreBreakdown,
    invoice_rules
)
from reconciliation.services.matching_service import MatchingService, MatchSuggestion
from reconciliation.services.reconciliation_service import BatchConfirmResult, ReconciliationService
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Matching Rules
    'InvoiceMatchingRules',
    'ScoreBreakdown',
    'invoice_rules',
    # Services
    'MatchingService',
    'MatchSuggestion',
    'ReconciliationService',
    'BatchConfirmResult',
    # Router
    'reconciliation_router'
]
