"""
Bank Statement Ingestion - Statement Parser

Parses CSV exports of Belgian banks (Belfius, KBC, ING, ...):
- Semicolon-separated values
- European dates (DD/MM/YYYY) and numbers (-1.234,56)
- Header preceded by a metadata preamble (12 lines by default)
- UTF-8 (with or without BOM) or Windows-1252

Rows that cannot be parsed are reported as warnings; the file only fails
when no row at all is usable.
"""

import csv
import io
import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from config import get_settings
from models.schemas import CandidateTransaction
from utils.errors import ParseError, ValidationError
from .categorizer import KeywordCategorizer

logger = logging.getLogger(__name__)


# ==================== CONSTANTS ====================

# Ordered alias lists per field: first header present in the file wins
COLUMN_ALIASES: Dict[str, List[str]] = {
    "date": ["Boekingsdatum", "Datum", "Date", "Valutadatum"],
    "counterparty_account": ["Rekening tegenpartij", "Tegenpartij", "Account", "IBAN"],
    "counterparty_name": [
        "Naam tegenpartij bevat", "Naam tegenpartij", "Tegenpartij naam", "Name", "Begunstigde",
    ],
    "description": ["Transactie", "Omschrijving", "Mededeling", "Description", "Details"],
    "amount": ["Bedrag", "Amount", "Montant"],
    "currency": ["Devies", "Munt", "Currency", "Devise"],
}

DEFAULT_DESCRIPTION = "No description"

UTF8_BOM = b"\xef\xbb\xbf"

FALLBACK_ENCODING = "cp1252"

_IBAN_PREFIX = re.compile(r"^[A-Z]{2}[0-9]{2}")
_CURRENCY_SYMBOLS = re.compile(r"[€$£\s]")


@dataclass
class ParseWarning:
    """A statement row that was skipped"""
    row_number: int
    message: str

    def to_dict(self) -> dict:
        return {"row": self.row_number, "message": self.message}


@dataclass
class ParseResult:
    """Outcome of parsing one statement file"""
    transactions: List[CandidateTransaction] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)
    total_rows: int = 0

    @property
    def failed_rows(self) -> int:
        return len(self.warnings)


# ==================== FIELD PARSERS ====================

def detect_encoding(raw: bytes) -> str:
    """
    Guess the text encoding of a statement export.

    UTF-8 BOM -> "utf-8-sig"; non-ASCII bytes that decode cleanly as UTF-8
    -> "utf-8"; anything else (including plain ASCII) -> Windows-1252.
    """
    if raw.startswith(UTF8_BOM):
        return "utf-8-sig"

    if raw.isascii():
        return FALLBACK_ENCODING

    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        return FALLBACK_ENCODING

    return "utf-8"


def parse_european_date(value: Optional[str]) -> Optional[date]:
    """
    Parse DD/MM/YYYY with calendar validation, falling back to ISO 8601.

    Returns None for anything else (including 31/02/2024).
    """
    if not value:
        return None

    value = value.strip()
    parts = value.split("/")
    if len(parts) == 3:
        try:
            day, month, year = (int(p) for p in parts)
            return date(year, month, day)
        except ValueError:
            pass

    try:
        return date.fromisoformat(value)
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def parse_european_number(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a European-formatted amount.

    "." is a thousands separator and "," the decimal separator:
    "-1.234,56" -> Decimal("-1234.56"), "€ 12,50" -> Decimal("12.50").
    """
    if not value:
        return None

    cleaned = _CURRENCY_SYMBOLS.sub("", value)
    cleaned = cleaned.replace(".", "").replace(",", ".")
    if not cleaned:
        return None

    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None

    if not number.is_finite():
        return None
    return number


def sanitize_iban(value: Optional[str]) -> Optional[str]:
    """Strip whitespace and upper-case; None unless it looks like an IBAN."""
    if not value:
        return None

    cleaned = re.sub(r"\s", "", value).upper()
    if len(cleaned) < 15 or not _IBAN_PREFIX.match(cleaned):
        return None
    return cleaned


# ==================== PARSER ====================

class StatementParser:
    """Turns a raw statement export into candidate transactions"""

    def __init__(
        self,
        header_skip_lines: Optional[int] = None,
        delimiter: Optional[str] = None,
        default_currency: Optional[str] = None,
        categorizer=None
    ):
        settings = get_settings()
        self.header_skip_lines = (
            header_skip_lines if header_skip_lines is not None
            else settings.CSV_HEADER_SKIP_LINES
        )
        self.delimiter = delimiter or settings.CSV_DELIMITER
        self.default_currency = default_currency or settings.DEFAULT_CURRENCY
        self.categorizer = categorizer or KeywordCategorizer()

    def decode(self, raw: bytes, encoding: Optional[str] = None) -> str:
        """Decode the export to text without its BOM."""
        encoding = encoding or detect_encoding(raw)

        try:
            text = raw.decode(encoding)
        except LookupError as e:
            raise ValidationError(f"Unknown encoding: {encoding}", {"encoding": encoding}) from e
        except UnicodeDecodeError:
            logger.warning(f"Statement is not valid {encoding}, decoding as {FALLBACK_ENCODING}")
            text = raw.decode(FALLBACK_ENCODING, errors="replace")

        return text.lstrip("\ufeff")

    def parse(self, raw: bytes, encoding: Optional[str] = None) -> ParseResult:
        """
        Parse a statement export.

        Args:
            raw: File content as uploaded
            encoding: Declared encoding; detected when omitted

        Returns:
            ParseResult with the candidates in file order

        Raises:
            ParseError: No transactions after the header, or no usable row
        """
        text = self.decode(raw, encoding)

        lines = re.split(r"\r?\n", text)
        data_lines = lines[self.header_skip_lines:]

        if len(data_lines) < 2:
            raise ParseError("CSV file is empty or has no transactions after header")

        reader = csv.reader(io.StringIO("\n".join(data_lines)), delimiter=self.delimiter)

        header: Optional[List[str]] = None
        columns: Dict[str, Optional[str]] = {}
        result = ParseResult()

        for cells in reader:
            cells = [cell.strip() for cell in cells]
            if not any(cells):
                continue

            if header is None:
                header = cells
                columns = self._resolve_columns(header)
                continue

            # Source line of the row, 1-based, preamble included
            row_number = self.header_skip_lines + reader.line_num
            result.total_rows += 1
            record = dict(zip(header, cells))

            try:
                result.transactions.append(self._parse_row(record, columns, row_number))
            except ValueError as e:
                logger.warning(f"Row {row_number}: {e}")
                result.warnings.append(ParseWarning(row_number=row_number, message=str(e)))

        if not result.transactions:
            raise ParseError(
                "No valid transactions found in CSV file",
                {
                    "total_rows": result.total_rows,
                    "warnings": [w.to_dict() for w in result.warnings[:20]],
                }
            )

        logger.info(
            f"Parsed {len(result.transactions)}/{result.total_rows} rows "
            f"({len(result.warnings)} skipped)"
        )
        return result

    def _resolve_columns(self, header: List[str]) -> Dict[str, Optional[str]]:
        """Map each field to the first alias present in the header."""
        present = set(header)
        columns = {}
        for name, aliases in COLUMN_ALIASES.items():
            columns[name] = next((alias for alias in aliases if alias in present), None)

        if not columns["date"] or not columns["amount"]:
            logger.warning(f"Statement header lacks a date or amount column: {header}")
        return columns

    def _parse_row(
        self,
        record: Dict[str, str],
        columns: Dict[str, Optional[str]],
        row_number: int
    ) -> CandidateTransaction:
        """Build a candidate from one record; raises ValueError when unusable."""

        def cell(name: str) -> str:
            column = columns.get(name)
            return record.get(column, "") if column else ""

        if not columns["date"] or not columns["amount"]:
            raise ValueError("Required fields (date, amount) not found in CSV row")

        execution_date = parse_european_date(cell("date"))
        if execution_date is None:
            raise ValueError(f"Invalid date format: {cell('date')!r}")

        amount = parse_european_number(cell("amount"))
        if amount is None:
            raise ValueError(f"Invalid amount format: {cell('amount')!r}")

        description = cell("description") or DEFAULT_DESCRIPTION
        counterparty_name = cell("counterparty_name") or None
        counterparty_account = sanitize_iban(cell("counterparty_account"))
        currency = cell("currency") or self.default_currency

        suggestion = self.categorizer.categorize(
            description, counterparty_name, amount, counterparty_account
        )

        return CandidateTransaction(
            execution_date=execution_date,
            amount=amount,
            currency=currency,
            description=description,
            counterparty_name=counterparty_name,
            counterparty_account=counterparty_account,
            category=suggestion.category if suggestion else None,
            category_confidence=suggestion.confidence if suggestion else None,
            row_number=row_number,
        )
