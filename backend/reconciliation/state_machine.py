"""
Reconciliation State Machine

Allowed transitions of bank transactions and match records. Anything not
listed is a ConflictError; in particular a MATCHED transaction can never be
ignored directly (it must be unmatched first).

Transaction:
    PENDING -> MATCHED  (confirm)
    MATCHED -> PENDING  (unmatch)
    PENDING -> IGNORED  (ignore)
    IGNORED -> PENDING  (unignore)

Match:
    PROPOSED  -> CONFIRMED  (confirm)
    PROPOSED  -> REJECTED   (reject)
    CONFIRMED -> REJECTED   (unmatch)
    REJECTED  -> CONFIRMED  (human re-confirmation of the same pair only)
"""

from typing import Dict, FrozenSet

from models.enums import DecidedBy, ReconciliationStatus, MatchStatus
from utils.errors import ConflictError


TRANSACTION_TRANSITIONS: Dict[ReconciliationStatus, FrozenSet[ReconciliationStatus]] = {
    ReconciliationStatus.PENDING: frozenset({ReconciliationStatus.MATCHED, ReconciliationStatus.IGNORED}),
    ReconciliationStatus.MATCHED: frozenset({ReconciliationStatus.PENDING}),
    ReconciliationStatus.IGNORED: frozenset({ReconciliationStatus.PENDING}),
}

MATCH_TRANSITIONS: Dict[MatchStatus, FrozenSet[MatchStatus]] = {
    MatchStatus.PROPOSED: frozenset({MatchStatus.CONFIRMED, MatchStatus.REJECTED}),
    MatchStatus.CONFIRMED: frozenset({MatchStatus.REJECTED}),
    MatchStatus.REJECTED: frozenset(),
}


def can_transition_transaction(current: ReconciliationStatus, target: ReconciliationStatus) -> bool:
    return target in TRANSACTION_TRANSITIONS.get(current, frozenset())


def can_transition_match(current: MatchStatus, target: MatchStatus) -> bool:
    return target in MATCH_TRANSITIONS.get(current, frozenset())


def ensure_transaction_transition(
    transaction_id: str,
    current: ReconciliationStatus,
    target: ReconciliationStatus
):
    """Raise ConflictError unless the transaction may move to ``target``."""
    if not can_transition_transaction(current, target):
        raise ConflictError(
            f"Transaction {transaction_id} cannot go from {current.value} to {target.value}",
            {"transaction_id": transaction_id, "from": current.value, "to": target.value}
        )


def ensure_match_transition(match_id: str, current: MatchStatus, target: MatchStatus):
    """Raise ConflictError unless the match may move to ``target``."""
    if not can_transition_match(current, target):
        raise ConflictError(
            f"Match {match_id} cannot go from {current.value} to {target.value}",
            {"match_id": match_id, "from": current.value, "to": target.value}
        )


def ensure_match_reconfirmation(match_id: str, current: MatchStatus, decided_by: DecidedBy):
    """
    Guard reuse of a stored pair record by confirm_match.

    A PROPOSED record follows the normal transition table. A REJECTED record
    may only be brought back by a human; the system never overrides a
    rejection.
    """
    if current == MatchStatus.REJECTED:
        if decided_by != DecidedBy.HUMAN:
            raise ConflictError(
                f"Match {match_id} was rejected and can only be confirmed again by a human",
                {"match_id": match_id, "from": current.value, "decided_by": decided_by.value}
            )
        return

    ensure_match_transition(match_id, current, MatchStatus.CONFIRMED)
