from enum import Enum


class ReconciliationStatus(str, Enum):
    """Reconciliation state of a bank transaction"""
    PENDING = "pending"
    MATCHED = "matched"
    IGNORED = "ignored"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Only these invoice states may receive a match
MATCHABLE_INVOICE_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.OVERDUE})


class MatchConfidence(str, Enum):
    HIGH = "high"          # Score >= 90, eligible for auto-match
    MEDIUM = "medium"      # Score 50-89, suggested to a human
    LOW = "low"            # Score < 50, manual review only
    MANUAL = "manual"      # Created directly by a human


class MatchStatus(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class DecidedBy(str, Enum):
    SYSTEM = "system"
    HUMAN = "human"


class SuggestedAction(str, Enum):
    AUTO_MATCH = "auto-match"
    SUGGEST = "suggest"
    MANUAL_REVIEW = "manual-review"


class TransactionCategory(str, Enum):
    """Best-effort spending categories assigned at import"""
    SALARY = "salary"
    REVENUE = "revenue"
    UTILITIES = "utilities"
    TELECOM = "telecom"
    SOFTWARE = "software"
    HOSTING = "hosting"
    MARKETING = "marketing"
    FUEL = "fuel"
    INSURANCE = "insurance"
    RENT = "rent"
    OFFICE_SUPPLIES = "office_supplies"
    PROFESSIONAL_SERVICES = "professional_services"
    BANK_FEES = "bank_fees"
    OTHER = "other"


class PatternType(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"
    REGEX = "regex"
    IBAN = "iban"
