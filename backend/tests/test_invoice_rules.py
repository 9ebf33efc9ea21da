"""
Unit Tests for Invoice Matching Rules

Tests:
- Each scoring criterion and its tiers
- Clamping of the total
- Confidence classification and suggested action
- Ranking ties and the candidate pre-filter

Run with: pytest tests/test_invoice_rules.py -v
"""

from datetime import date
from decimal import Decimal

import pytest

from models.enums import MatchConfidence, ReconciliationStatus, SuggestedAction
from reconciliation.matching_rules.invoice_rules import InvoiceMatchingRules, ScoreBreakdown


@pytest.fixture
def rules():
    return InvoiceMatchingRules(vendor_weight=0, date_window_days=7, amount_tolerance_percent=0.05)


class TestAmountScoring:

    @pytest.mark.parametrize("tx_amount,expected", [
        ("-121.00", 50),
        ("-121.05", 45),
        ("-120.90", 45),
        ("-121.80", 35),
        ("-124.00", 20),
        ("-116.00", 20),
    ])
    def test_tiers(self, rules, make_invoice, make_transaction, tx_amount, expected):
        invoice = make_invoice(total="121.00")
        transaction = make_transaction(amount=tx_amount)

        assert rules.score(invoice, transaction).amount == expected

    def test_percentage_tier(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(total="1000.00")

        assert rules.score(invoice, make_transaction(amount="-1040.00")).amount == 10
        assert rules.score(invoice, make_transaction(amount="-1060.00")).amount == 0

    def test_sign_ignored(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(total="121.00")

        assert rules.score(invoice, make_transaction(amount="121.00")).amount == 50


class TestDateScoring:

    @pytest.mark.parametrize("day,expected", [
        (15, 20),
        (13, 15),
        (17, 15),
        (22, 10),
        (8, 10),
        (29, 5),
        (30, 0),
    ])
    def test_tiers(self, rules, make_invoice, make_transaction, day, expected):
        invoice = make_invoice(due_date=date(2024, 3, 15))
        transaction = make_transaction(execution_date=date(2024, 3, day))

        assert rules.score(invoice, transaction).date == expected

    def test_issue_date_used_without_due_date(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(due_date=None, issue_date=date(2024, 3, 1))
        transaction = make_transaction(execution_date=date(2024, 3, 1))

        assert rules.score(invoice, transaction).date == 20

    def test_no_reference_date(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(due_date=None)

        assert rules.score(invoice, make_transaction()).date == 0
        assert rules.day_distance(invoice, make_transaction()) is None


class TestTextScoring:

    def test_invoice_number_ignores_punctuation(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(invoice_number="INV-2024-001")
        transaction = make_transaction(description="Betaling INV2024/001 dank u")

        assert rules.score(invoice, transaction).invoice_number == 30

    def test_invoice_number_absent(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(invoice_number="INV-2024-001")
        transaction = make_transaction(description="Betaling INV-2024-002")

        assert rules.score(invoice, transaction).invoice_number == 0

    def test_reference_verbatim(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(payment_reference="+++090/9337/55493+++")

        matching = make_transaction(description="Mededeling +++090/9337/55493+++")
        reformatted = make_transaction(description="Mededeling 090933755493")

        assert rules.score(invoice, matching).reference == 10
        assert rules.score(invoice, reformatted).reference == 0


class TestVendorScoring:

    def test_disabled_by_default_weight(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(vendor_name="Telenet NV")
        transaction = make_transaction(counterparty_name="Telenet NV")

        assert rules.score(invoice, transaction).vendor == 0

    def test_similar_names(self, make_invoice, make_transaction):
        rules = InvoiceMatchingRules(vendor_weight=10)
        invoice = make_invoice(vendor_name="Telenet NV")

        assert rules.score(invoice, make_transaction(counterparty_name="Telenet NV")).vendor == 10
        assert 0 < rules.score(invoice, make_transaction(counterparty_name="TELENET N.V.")).vendor <= 10

    def test_dissimilar_names(self, make_invoice, make_transaction):
        rules = InvoiceMatchingRules(vendor_weight=10)
        invoice = make_invoice(vendor_name="Telenet NV")

        assert rules.score(invoice, make_transaction(counterparty_name="Proximus")).vendor == 0
        assert rules.score(invoice, make_transaction(counterparty_name=None)).vendor == 0


class TestTotals:

    def test_perfect_match_is_clamped(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(
            total="121.00",
            invoice_number="INV-2024-001",
            payment_reference="+++090/9337/55493+++",
        )
        transaction = make_transaction(
            amount="-121.00",
            description="INV-2024-001 +++090/9337/55493+++",
        )

        breakdown = rules.score(invoice, transaction)

        assert breakdown.amount + breakdown.date + breakdown.invoice_number + breakdown.reference == 110
        assert breakdown.total == 100
        assert breakdown.to_dict()["total"] == 100

    def test_amount_and_date_only(self, rules, make_invoice, make_transaction):
        assert rules.score(make_invoice(), make_transaction()).total == 70

    def test_breakdown_total_bounds(self):
        assert ScoreBreakdown().total == 0
        assert ScoreBreakdown(amount=50, date=20, invoice_number=30, reference=10, vendor=25).total == 100


class TestClassification:

    @pytest.mark.parametrize("score,confidence,action", [
        (100, MatchConfidence.HIGH, SuggestedAction.AUTO_MATCH),
        (90, MatchConfidence.HIGH, SuggestedAction.AUTO_MATCH),
        (89, MatchConfidence.MEDIUM, SuggestedAction.SUGGEST),
        (50, MatchConfidence.MEDIUM, SuggestedAction.SUGGEST),
        (49, MatchConfidence.LOW, SuggestedAction.MANUAL_REVIEW),
        (0, MatchConfidence.LOW, SuggestedAction.MANUAL_REVIEW),
    ])
    def test_thresholds(self, rules, score, confidence, action):
        assert rules.classify(score) == confidence
        assert rules.suggested_action(score) == action


class TestRanking:

    def test_closer_date_breaks_score_tie(self, rules, make_invoice, make_transaction):
        invoice = make_invoice(due_date=date(2024, 3, 15))
        near = make_transaction(id="tx-b", execution_date=date(2024, 3, 16))
        far = make_transaction(id="tx-a", execution_date=date(2024, 3, 20))

        ranked = sorted([far, near], key=lambda t: rules.rank_key(70, invoice, t))

        assert [t.id for t in ranked] == ["tx-b", "tx-a"]

    def test_id_breaks_full_tie(self, rules, make_invoice, make_transaction):
        invoice = make_invoice()
        second = make_transaction(id="tx-2")
        first = make_transaction(id="tx-1")

        ranked = sorted([second, first], key=lambda t: rules.rank_key(70, invoice, t))

        assert [t.id for t in ranked] == ["tx-1", "tx-2"]

    def test_higher_score_first(self, rules, make_invoice, make_transaction):
        invoice = make_invoice()
        tx = make_transaction()

        assert rules.rank_key(90, invoice, tx) < rules.rank_key(70, invoice, tx)


class TestCandidateQuery:

    def test_bounds(self, rules, make_invoice):
        query = rules.candidate_query(make_invoice(total="100.00", due_date=date(2024, 3, 15)), account_id="acc-1")

        assert query.date_from == date(2024, 3, 8)
        assert query.date_to == date(2024, 3, 22)
        assert query.amount_min == Decimal("95")
        assert query.amount_max == Decimal("105")
        assert query.status == ReconciliationStatus.PENDING
        assert query.expenses_only is True
        assert query.account_id == "acc-1"

    def test_today_without_reference_date(self, rules, make_invoice):
        query = rules.candidate_query(make_invoice(due_date=None), today=date(2024, 6, 1))

        assert query.date_from == date(2024, 5, 25)
        assert query.date_to == date(2024, 6, 8)

    def test_accepts(self, rules, make_invoice, make_transaction):
        query = rules.candidate_query(make_invoice(total="100.00"))

        assert query.accepts(make_transaction(amount="-100.00"))
        assert not query.accepts(make_transaction(amount="100.00"))
        assert not query.accepts(make_transaction(amount="-110.00"))
        assert not query.accepts(make_transaction(amount="-100.00", execution_date=date(2024, 4, 1)))
        assert not query.accepts(
            make_transaction(amount="-100.00", status=ReconciliationStatus.IGNORED)
        )
