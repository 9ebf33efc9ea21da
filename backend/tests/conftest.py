"""
Shared fixtures for the ingestion and reconciliation tests.
"""

from datetime import date
from decimal import Decimal

import pytest

from database.memory_store import create_memory_stores
from models.enums import InvoiceStatus, ReconciliationStatus
from models.schemas import BankTransaction, Invoice

STATEMENT_HEADER = "Boekingsdatum;Rekening tegenpartij;Naam tegenpartij bevat;Transactie;Bedrag;Devies"

PREAMBLE = [
    "Belfius Bank",
    "Rekeningnummer;BE68 5390 0754 7034",
    "Periode;01/03/2024 - 31/03/2024",
] + [""] * 9


def build_statement(rows, header=STATEMENT_HEADER, preamble=None, encoding="utf-8", bom=False):
    """Assemble a statement export: 12 preamble lines, header, rows."""
    lines = list(PREAMBLE if preamble is None else preamble) + [header] + list(rows)
    raw = "\r\n".join(lines).encode(encoding)
    return b"\xef\xbb\xbf" + raw if bom else raw


@pytest.fixture
def statement():
    return build_statement


@pytest.fixture
def stores():
    """Fresh in-memory stores sharing one lock."""
    return create_memory_stores()


@pytest.fixture
def make_transaction():
    counter = {"n": 0}

    def _make(
        amount="-121.00",
        execution_date=date(2024, 3, 15),
        description="Betaling",
        account_id="acc-1",
        counterparty_name=None,
        status=ReconciliationStatus.PENDING,
        **kwargs
    ) -> BankTransaction:
        counter["n"] += 1
        amount = Decimal(amount)
        return BankTransaction(
            id=kwargs.pop("id", f"tx-{counter['n']:03d}"),
            account_id=account_id,
            fingerprint=kwargs.pop("fingerprint", f"fp-{counter['n']:03d}"),
            execution_date=execution_date,
            amount=amount,
            description=description,
            counterparty_name=counterparty_name,
            reconciliation_status=status,
            **kwargs
        )

    return _make


@pytest.fixture
def make_invoice():
    counter = {"n": 0}

    def _make(
        total="121.00",
        due_date=date(2024, 3, 15),
        invoice_number=None,
        payment_reference=None,
        status=InvoiceStatus.PENDING,
        **kwargs
    ) -> Invoice:
        counter["n"] += 1
        return Invoice(
            id=kwargs.pop("id", f"inv-{counter['n']:03d}"),
            total=Decimal(total),
            due_date=due_date,
            invoice_number=invoice_number,
            payment_reference=payment_reference,
            status=status,
            **kwargs
        )

    return _make
