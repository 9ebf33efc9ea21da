from .schemas import (
    CandidateTransaction, BankTransaction, Invoice, ReconciliationMatch,
    generate_uuid, utc_now
)
from .enums import (
    ReconciliationStatus, InvoiceStatus, MatchConfidence, MatchStatus,
    DecidedBy, SuggestedAction, TransactionCategory, PatternType,
    MATCHABLE_INVOICE_STATUSES
)

__all__ = [
    'CandidateTransaction', 'BankTransaction', 'Invoice', 'ReconciliationMatch',
    'generate_uuid', 'utc_now',
    'ReconciliationStatus', 'InvoiceStatus', 'MatchConfidence', 'MatchStatus',
    'DecidedBy', 'SuggestedAction', 'TransactionCategory', 'PatternType',
    'MATCHABLE_INVOICE_STATUSES'
]
