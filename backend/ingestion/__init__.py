"""
Bank Statement Ingestion Module

Provides statement parsing, auto-categorisation, fingerprint
deduplication and transaction import.
"""

from .statement_parser import (
    StatementParser,
    ParseResult,
    ParseWarning,
    detect_encoding,
    parse_european_date,
    parse_european_number,
    sanitize_iban
)
from .categorizer import (
    KeywordCategorizer,
    RuleBasedCategorizer,
    CategorizationRule,
    CategorySuggestion
)
from .fingerprint import fingerprint
from .service import (
    StatementImportService,
    ImportOptions,
    ImportResult,
    PreviewResult
)

__all__ = [
    "StatementParser",
    "ParseResult",
    "ParseWarning",
    "detect_encoding",
    "parse_european_date",
    "parse_european_number",
    "sanitize_iban",
    "KeywordCategorizer",
    "RuleBasedCategorizer",
    "CategorizationRule",
    "CategorySuggestion",
    "fingerprint",
    "StatementImportService",
    "ImportOptions",
    "ImportResult",
    "PreviewResult",
]
