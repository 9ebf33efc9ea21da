"""
Bank Statement Ingestion - Transaction Fingerprint

The fingerprint is the deduplication key of an imported row. It is derived
from content only (date, amount, description) so the same row in a
re-downloaded statement hashes to the same value. Uniqueness is scoped per
account: the store rejects a second (account_id, fingerprint) pair.
"""

import hashlib
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from models.schemas import CandidateTransaction, BankTransaction

FINGERPRINT_LENGTH = 32

_CENT = Decimal("0.01")


def fingerprint_parts(execution_date: date, amount: Decimal, description: str) -> str:
    """Canonical pre-image: ``YYYY-MM-DD|amount|description``."""
    normalized_amount = Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    normalized_description = (description or "").strip().lower()
    return f"{execution_date.isoformat()}|{normalized_amount:.2f}|{normalized_description}"


def fingerprint(transaction: Union[CandidateTransaction, BankTransaction]) -> str:
    """
    Compute the deduplication fingerprint of a transaction.

    Two rows with the same date, the same amount to the cent and the same
    description (ignoring case and surrounding whitespace) share a
    fingerprint. Counterparty and currency do not participate.

    Returns:
        First 32 hex characters of the SHA-256 digest
    """
    payload = fingerprint_parts(
        transaction.execution_date,
        transaction.amount,
        transaction.description,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
