"""
API Tests for the Reconciliation Router

Runs the router against in-memory stores through FastAPI's TestClient.

Run with: pytest tests/test_reconciliation_api.py -v
"""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from models.enums import InvoiceStatus
from models.schemas import Invoice
from reconciliation.endpoints.reconciliation_api import get_stores, router
from utils.errors import StoreError

ROWS = [
    "15/03/2024;BE68 5390 0754 7034;Telenet NV;Factuur INV-2024-001;-121,00;EUR",
    "18/03/2024;;Immo Janssens;Huur kantoor maart;-850,00;EUR",
]


@pytest.fixture
def app(stores):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_stores] = lambda: stores
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def invoice(stores):
    invoice = Invoice(
        id="inv-1",
        total=Decimal("121.00"),
        due_date=date(2024, 3, 15),
        invoice_number="INV-2024-001",
        vendor_name="Telenet NV",
    )
    asyncio.run(stores.invoices.add(invoice))
    return invoice


@pytest.fixture
def imported(client, statement):
    response = client.post("/reconciliation/import/acc-1", content=statement(ROWS))
    assert response.status_code == 200
    return response.json()


class TestImportEndpoints:

    def test_import(self, client, statement):
        response = client.post("/reconciliation/import/acc-1", content=statement(ROWS))

        assert response.status_code == 200
        body = response.json()
        assert body["imported"] == 2
        assert body["skipped"] == 0
        assert body["transactions"][0]["external_fingerprint"]

    def test_reimport_skips(self, client, statement, imported):
        response = client.post("/reconciliation/import/acc-1", content=statement(ROWS))

        assert response.json()["skipped"] == 2

    def test_strict_reimport_conflicts(self, client, statement, imported):
        response = client.post(
            "/reconciliation/import/acc-1", params={"strict": "true"}, content=statement(ROWS)
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "conflict"

    def test_invalid_options(self, client, statement):
        response = client.post(
            "/reconciliation/import/acc-1",
            params={"strict": "true", "update_existing": "true"},
            content=statement(ROWS),
        )

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "validation_error"

    def test_empty_body(self, client):
        response = client.post("/reconciliation/import/acc-1", content=b"")

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "missing_parameter"

    def test_unparseable_statement(self, client, statement):
        response = client.post("/reconciliation/import/acc-1", content=statement(["garbage;;;;;"]))

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "parse_error"

    def test_preview(self, client, statement, imported):
        response = client.post(
            "/reconciliation/import/acc-1/preview",
            content=statement(ROWS + ["20/03/2024;;Shop;Aankoop;-10,00;EUR"]),
        )

        body = response.json()
        assert body["total"] == 3
        assert body["duplicate_count"] == 2
        assert body["new_count"] == 1


class TestSuggestionEndpoints:

    def test_suggestions(self, client, invoice, imported):
        response = client.get(f"/reconciliation/invoices/{invoice.id}/suggestions")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        suggestion = body["suggestions"][0]
        assert suggestion["score"] == 100
        assert suggestion["confidence"] == "high"
        assert suggestion["suggested_action"] == "auto-match"

    def test_suggestions_unknown_invoice(self, client):
        response = client.get("/reconciliation/invoices/missing/suggestions")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_suggestions_query_validation(self, client, invoice):
        response = client.get(
            f"/reconciliation/invoices/{invoice.id}/suggestions", params={"min_score": 101}
        )

        assert response.status_code == 422

    def test_best_match(self, client, invoice, imported):
        response = client.get(f"/reconciliation/invoices/{invoice.id}/best-match")

        assert response.json()["best_match"]["score"] == 100

    def test_best_match_none(self, client, invoice):
        response = client.get(f"/reconciliation/invoices/{invoice.id}/best-match")

        assert response.status_code == 200
        assert response.json()["best_match"] is None

    def test_auto_matchable_and_auto_match(self, client, invoice, imported, stores):
        auto = client.get("/reconciliation/auto-matchable").json()
        assert auto["count"] == 1

        result = client.post("/reconciliation/auto-match").json()

        assert result["succeeded"] == 1
        assert asyncio.run(stores.invoices.get(invoice.id)).status == InvoiceStatus.PAID


class TestMatchEndpoints:

    def _transaction_id(self, imported):
        return imported["transactions"][0]["id"]

    def test_confirm_and_unmatch(self, client, invoice, imported, stores):
        transaction_id = self._transaction_id(imported)

        confirmed = client.post("/reconciliation/matches", json={
            "invoice_id": invoice.id, "transaction_id": transaction_id, "decider_id": "user-1",
        })
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "confirmed"
        assert confirmed.json()["confidence"] == "manual"

        unmatched = client.delete(f"/reconciliation/matches/{confirmed.json()['id']}")
        assert unmatched.status_code == 200
        assert unmatched.json()["status"] == "rejected"
        assert asyncio.run(stores.invoices.get(invoice.id)).status == InvoiceStatus.PENDING

        again = client.delete(f"/reconciliation/matches/{confirmed.json()['id']}")
        assert again.status_code == 409

    def test_double_confirm_conflicts(self, client, invoice, imported):
        payload = {"invoice_id": invoice.id, "transaction_id": self._transaction_id(imported)}

        assert client.post("/reconciliation/matches", json=payload).status_code == 200
        assert client.post("/reconciliation/matches", json=payload).status_code == 409

    def test_confirm_requires_ids(self, client):
        response = client.post("/reconciliation/matches", json={"invoice_id": "inv-1"})

        assert response.status_code == 422

    def test_propose_then_reject(self, client, invoice, imported):
        proposed = client.post(f"/reconciliation/invoices/{invoice.id}/propose").json()
        match_id = proposed["matches"][0]["id"]

        rejected = client.post(
            f"/reconciliation/matches/{match_id}/reject", json={"reason": "wrong invoice"}
        )

        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"
        assert rejected.json()["notes"] == "wrong invoice"

    def test_propose_then_confirm(self, client, invoice, imported):
        proposed = client.post(f"/reconciliation/invoices/{invoice.id}/propose").json()
        match_id = proposed["matches"][0]["id"]

        confirmed = client.post(f"/reconciliation/matches/{match_id}/confirm")

        assert confirmed.status_code == 200
        assert confirmed.json()["id"] == match_id


class TestTransactionEndpoints:

    def test_ignore_and_unignore(self, client, imported):
        transaction_id = imported["transactions"][1]["id"]

        ignored = client.post(f"/reconciliation/transactions/{transaction_id}/ignore")
        assert ignored.json()["reconciliation_status"] == "ignored"

        restored = client.post(f"/reconciliation/transactions/{transaction_id}/unignore")
        assert restored.json()["reconciliation_status"] == "pending"

        assert client.post(f"/reconciliation/transactions/{transaction_id}/unignore").status_code == 409

    def test_ignore_unknown(self, client):
        assert client.post("/reconciliation/transactions/missing/ignore").status_code == 404


class TestStatusEndpoint:

    def test_counts(self, client, imported):
        body = client.get("/reconciliation/status").json()

        assert body["status"] == "operational"
        assert body["transactions"] == {"pending": 2, "matched": 0, "ignored": 0}
        assert body["thresholds"]["auto_match_min_score"] == 90

    def test_store_failure_is_503(self, client, stores):
        stores.transactions.count_by_status = AsyncMock(side_effect=StoreError("database down"))

        response = client.get("/reconciliation/status")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "store_error"
        assert "database down" not in response.json()["detail"]["message"]
