"""
Unit Tests for the Reconciliation State Machine

Run with: pytest tests/test_state_machine.py -v
"""

import pytest

from models.enums import DecidedBy, MatchStatus, ReconciliationStatus
from reconciliation.state_machine import (
    can_transition_match,
    can_transition_transaction,
    ensure_match_reconfirmation,
    ensure_match_transition,
    ensure_transaction_transition,
)
from utils.errors import ConflictError


class TestTransactionTransitions:

    @pytest.mark.parametrize("current,target", [
        (ReconciliationStatus.PENDING, ReconciliationStatus.MATCHED),
        (ReconciliationStatus.MATCHED, ReconciliationStatus.PENDING),
        (ReconciliationStatus.PENDING, ReconciliationStatus.IGNORED),
        (ReconciliationStatus.IGNORED, ReconciliationStatus.PENDING),
    ])
    def test_allowed(self, current, target):
        assert can_transition_transaction(current, target)
        ensure_transaction_transition("tx-1", current, target)

    @pytest.mark.parametrize("current,target", [
        (ReconciliationStatus.MATCHED, ReconciliationStatus.IGNORED),
        (ReconciliationStatus.IGNORED, ReconciliationStatus.MATCHED),
        (ReconciliationStatus.MATCHED, ReconciliationStatus.MATCHED),
    ])
    def test_forbidden(self, current, target):
        assert not can_transition_transaction(current, target)

        with pytest.raises(ConflictError) as exc_info:
            ensure_transaction_transition("tx-1", current, target)

        assert exc_info.value.details == {
            "transaction_id": "tx-1", "from": current.value, "to": target.value
        }


class TestMatchTransitions:

    def test_proposed_can_be_decided(self):
        assert can_transition_match(MatchStatus.PROPOSED, MatchStatus.CONFIRMED)
        assert can_transition_match(MatchStatus.PROPOSED, MatchStatus.REJECTED)

    def test_confirmed_only_unmatches(self):
        assert can_transition_match(MatchStatus.CONFIRMED, MatchStatus.REJECTED)
        assert not can_transition_match(MatchStatus.CONFIRMED, MatchStatus.PROPOSED)

    @pytest.mark.parametrize("target", list(MatchStatus))
    def test_rejected_has_no_transitions(self, target):
        with pytest.raises(ConflictError):
            ensure_match_transition("m-1", MatchStatus.REJECTED, target)


class TestMatchReconfirmation:

    def test_human_may_reconfirm_rejected_pair(self):
        ensure_match_reconfirmation("m-1", MatchStatus.REJECTED, DecidedBy.HUMAN)

    def test_system_may_not_reconfirm_rejected_pair(self):
        with pytest.raises(ConflictError) as exc_info:
            ensure_match_reconfirmation("m-1", MatchStatus.REJECTED, DecidedBy.SYSTEM)

        assert exc_info.value.details["decided_by"] == "system"

    @pytest.mark.parametrize("decided_by", list(DecidedBy))
    def test_proposal_follows_transition_table(self, decided_by):
        ensure_match_reconfirmation("m-1", MatchStatus.PROPOSED, decided_by)

    def test_confirmed_pair_cannot_be_reconfirmed(self):
        with pytest.raises(ConflictError):
            ensure_match_reconfirmation("m-1", MatchStatus.CONFIRMED, DecidedBy.HUMAN)
