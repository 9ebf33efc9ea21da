"""
Infrastructure Tests

This test suite verifies:
1. Settings validation
2. Structured JSON logging and the import log context
3. Sentry payload redaction
4. Health check endpoints

Run with: pytest tests/test_infrastructure.py -v
"""

import json
import logging

import pytest
from fastapi.testclient import TestClient

from config import Settings
from logging_config import (
    ImportContextFilter, JSONFormatter, clear_import_context, set_import_context
)
from sentry_integration import filter_sensitive_data, redact


def _record(message="hello", **extra):
    record = logging.LogRecord("tests", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettings:

    def test_defaults(self):
        settings = Settings(ENVIRONMENT="development")

        assert settings.AUTO_MATCH_MIN_SCORE == 90
        assert settings.BEST_MATCH_MIN_SCORE == 50
        assert settings.MATCH_MIN_SCORE == 30
        assert settings.MATCH_VENDOR_WEIGHT == 0
        assert settings.CSV_HEADER_SKIP_LINES == 12
        assert settings.debug_enabled

    def test_production_requires_database(self):
        settings = Settings(ENVIRONMENT="production", DATABASE_URL="", DEBUG=False)

        assert "DATABASE_URL is required" in settings.validate_production_config()

    def test_inverted_thresholds(self):
        settings = Settings(ENVIRONMENT="development", BEST_MATCH_MIN_SCORE=95)

        errors = settings.validate_production_config()

        assert "BEST_MATCH_MIN_SCORE must not exceed AUTO_MATCH_MIN_SCORE" in errors

    def test_out_of_range_threshold_rejected(self):
        with pytest.raises(ValueError):
            Settings(AUTO_MATCH_MIN_SCORE=101)


class TestStructuredLogging:

    def test_extra_fields_nested(self):
        formatter = JSONFormatter(service_name="bankrec-test")

        payload = json.loads(formatter.format(_record(event="import.completed", imported=3)))

        assert payload["message"] == "hello"
        assert payload["service"] == "bankrec-test"
        assert payload["extra"] == {"event": "import.completed", "imported": 3}

    def test_import_context_stamped(self):
        log_filter = ImportContextFilter()
        set_import_context("acc-1", "stmt-1")
        try:
            record = _record()
            log_filter.filter(record)
        finally:
            clear_import_context()

        assert record.account_id == "acc-1"
        assert record.statement_id == "stmt-1"

    def test_explicit_account_wins(self):
        log_filter = ImportContextFilter()
        set_import_context("acc-1", "stmt-1")
        try:
            record = _record(account_id="acc-2")
            log_filter.filter(record)
        finally:
            clear_import_context()

        assert record.account_id == "acc-2"


class TestSentryRedaction:

    def test_nested_values_redacted(self):
        data = {"row": {"counterparty_account": "BE68539007547034", "amount": "-1.00"}}

        assert redact(data) == {"row": {"counterparty_account": "[REDACTED]", "amount": "-1.00"}}

    def test_event_filter(self):
        event = {
            "request": {"headers": {"Authorization": "Bearer abc"}},
            "extra": {"counterparty_name": "Telenet NV", "account_id": "acc-1"},
        }

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"]["Authorization"] == "[REDACTED]"
        assert filtered["extra"] == {"counterparty_name": "[REDACTED]", "account_id": "acc-1"}


class TestHealthEndpoints:

    @pytest.fixture
    def client(self):
        from server import create_app

        return TestClient(create_app(Settings(ENVIRONMENT="development", DATABASE_URL="")))

    def test_root(self, client):
        response = client.get("/api/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_liveness(self, client):
        response = client.get("/api/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert "X-Request-ID" in response.headers

    def test_reconciliation_router_mounted(self, client):
        response = client.get("/api/reconciliation/status")

        assert response.status_code == 200
        assert response.json()["status"] == "operational"
