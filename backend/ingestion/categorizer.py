"""
Bank Statement Ingestion - Auto-Categorizer

Best-effort category suggestion for imported rows:

1. KeywordCategorizer: fixed keyword table tuned for Belgian statements
   (Dutch/English vendor names), scoped by the sign of the amount.
2. RuleBasedCategorizer: user/system rules (exact, contains, regex, IBAN)
   evaluated by priority, falling back to the keyword table.

A suggestion never blocks an import; "no category" is a valid outcome.
"""

import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Pattern, Tuple

from config import get_settings
from models.enums import PatternType, TransactionCategory
from models.schemas import generate_uuid
from utils.errors import ValidationError

logger = logging.getLogger(__name__)

# Pattern shape accepted for IBAN rules
IBAN_RULE_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]+$")


@dataclass
class CategorySuggestion:
    """Category proposed for a single transaction"""
    category: TransactionCategory
    confidence: int
    reason: str
    source: str = "keyword"

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "source": self.source,
        }


# ==================== KEYWORD TABLE ====================

# Applied only to inflows (amount > 0)
INCOME_KEYWORDS: List[Tuple[TransactionCategory, Tuple[str, ...]]] = [
    (TransactionCategory.SALARY, ("loon", "salaris", "salary", "wages")),
    (TransactionCategory.REVENUE, ("factuur", "invoice", "payment")),
]

# Applied only to outflows (amount < 0)
EXPENSE_KEYWORDS: List[Tuple[TransactionCategory, Tuple[str, ...]]] = [
    (TransactionCategory.UTILITIES, ("electrabel", "luminus", "engie", "electricity", "gas")),
    (TransactionCategory.TELECOM, ("telenet", "proximus", "orange", "scarlet", "mobile", "gsm")),
    (TransactionCategory.SOFTWARE, (
        "microsoft", "google", "adobe", "aws", "azure", "github", "vercel", "netlify",
    )),
    (TransactionCategory.HOSTING, ("hetzner", "ovh", "digital ocean", "linode", "hosting")),
    (TransactionCategory.MARKETING, (
        "google ads", "facebook ads", "linkedin ads", "mailchimp", "sendgrid",
    )),
    (TransactionCategory.FUEL, ("shell", "total", "q8", "esso", "fuel", "benzine", "diesel")),
    (TransactionCategory.INSURANCE, ("insurance", "verzekering")),
    (TransactionCategory.RENT, ("huur", "rent", "lease")),
    (TransactionCategory.OFFICE_SUPPLIES, ("staples", "office depot", "bol.com", "amazon")),
    (TransactionCategory.PROFESSIONAL_SERVICES, ("accountant", "boekhouder", "lawyer", "advocaat")),
]


def _compile_keywords(table):
    """Whole-word patterns, longest keyword first; ties keep table order."""
    entries = [
        (category, keyword, re.compile(rf"\b{re.escape(keyword)}\b"))
        for category, keywords in table
        for keyword in keywords
    ]
    return sorted(entries, key=lambda entry: -len(entry[1]))


_INCOME_PATTERNS = _compile_keywords(INCOME_KEYWORDS)
_EXPENSE_PATTERNS = _compile_keywords(EXPENSE_KEYWORDS)


class KeywordCategorizer:
    """Keyword-table categorisation, scoped by the sign of the amount"""

    def __init__(self, confidence: Optional[int] = None):
        self.confidence = (
            confidence if confidence is not None
            else get_settings().AUTO_CATEGORY_CONFIDENCE
        )

    def categorize(
        self,
        description: str,
        counterparty_name: Optional[str],
        amount: Decimal,
        counterparty_account: Optional[str] = None
    ) -> Optional[CategorySuggestion]:
        """
        Suggest a category for a statement row.

        Args:
            description: Row description
            counterparty_name: Optional counterparty name
            amount: Signed amount; zero never gets a category
            counterparty_account: Unused by the keyword table

        Returns:
            CategorySuggestion or None when no keyword applies
        """
        text = f"{description or ''} {counterparty_name or ''}".lower()

        if amount > 0:
            patterns = _INCOME_PATTERNS
        elif amount < 0:
            patterns = _EXPENSE_PATTERNS
        else:
            return None

        for category, keyword, pattern in patterns:
            if pattern.search(text):
                return CategorySuggestion(
                    category=category,
                    confidence=self.confidence,
                    reason=f"Keyword '{keyword}'",
                )

        return None


# ==================== RULES ====================

@dataclass
class CategorizationRule:
    """
    A categorisation rule evaluated before the keyword table.

    Validated on construction: non-empty pattern, compilable regex,
    IBAN-shaped pattern for IBAN rules, confidence in [0, 100].
    """
    pattern: str
    pattern_type: PatternType
    category: TransactionCategory
    confidence: int = 100
    priority: int = 0
    is_active: bool = True
    source: str = "user"
    id: str = field(default_factory=generate_uuid)
    _compiled: Optional[Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.pattern_type = PatternType(self.pattern_type)
        self.category = TransactionCategory(self.category)

        if not 0 <= self.confidence <= 100:
            raise ValidationError(
                "Confidence must be between 0 and 100",
                {"confidence": self.confidence}
            )

        if not self.pattern or not self.pattern.strip():
            raise ValidationError("Pattern cannot be empty")

        if self.pattern_type == PatternType.REGEX:
            try:
                self._compiled = re.compile(self.pattern, re.IGNORECASE)
            except re.error as e:
                raise ValidationError(
                    f"Invalid regex pattern: {e}",
                    {"pattern": self.pattern}
                ) from e

        if self.pattern_type == PatternType.IBAN:
            self.pattern = re.sub(r"\s", "", self.pattern).upper()
            if not IBAN_RULE_PATTERN.match(self.pattern):
                raise ValidationError("Invalid IBAN pattern", {"pattern": self.pattern})

    def matches(
        self,
        description: str,
        counterparty_name: Optional[str] = None,
        iban: Optional[str] = None
    ) -> bool:
        """
        Test the rule against a statement row.

        EXACT compares the description and the counterparty name separately;
        CONTAINS and REGEX search both joined; IBAN compares the counterparty
        account.
        """
        if not self.is_active:
            return False

        if self.pattern_type == PatternType.EXACT:
            wanted = self.pattern.strip().lower()
            return any(
                (value or "").strip().lower() == wanted
                for value in (description, counterparty_name)
            )

        text = f"{description or ''} {counterparty_name or ''}".strip()

        if self.pattern_type == PatternType.CONTAINS:
            return self.pattern.lower() in text.lower()

        if self.pattern_type == PatternType.REGEX:
            return bool(self._compiled.search(text))

        if self.pattern_type == PatternType.IBAN:
            if not iban:
                return False
            return re.sub(r"\s", "", iban).upper() == self.pattern

        return False


class RuleBasedCategorizer:
    """
    Evaluate active rules by descending priority; first match wins.
    Falls back to the keyword table when no rule applies.
    """

    def __init__(
        self,
        rules: List[CategorizationRule],
        fallback: Optional[KeywordCategorizer] = None
    ):
        # Stable sort keeps insertion order among equal priorities
        self.rules = sorted(rules, key=lambda r: r.priority, reverse=True)
        self.fallback = fallback or KeywordCategorizer()

    def categorize(
        self,
        description: str,
        counterparty_name: Optional[str],
        amount: Decimal,
        counterparty_account: Optional[str] = None
    ) -> Optional[CategorySuggestion]:
        for rule in self.rules:
            if rule.matches(description, counterparty_name, counterparty_account):
                logger.debug(f"Rule {rule.id} ({rule.pattern_type.value}) matched")
                return CategorySuggestion(
                    category=rule.category,
                    confidence=rule.confidence,
                    reason=f"Rule {rule.pattern_type.value} '{rule.pattern}'",
                    source="rule",
                )

        return self.fallback.categorize(
            description, counterparty_name, amount, counterparty_account
        )
