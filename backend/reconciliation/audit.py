"""
Reconciliation audit trail.

Every decision is emitted as a structured log record; the JSON formatter
puts the payload under "extra" for the log pipeline.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("reconciliation.audit")


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    MATCH_PROPOSED = "reconciliation.match_proposed"
    MATCH_CONFIRMED = "reconciliation.match_confirmed"
    MATCH_REJECTED = "reconciliation.match_rejected"
    MATCH_UNMATCHED = "reconciliation.match_unmatched"
    TRANSACTION_IGNORED = "reconciliation.transaction_ignored"
    TRANSACTION_UNIGNORED = "reconciliation.transaction_unignored"
    BATCH_CONFIRMED = "reconciliation.batch_confirmed"


def log_reconciliation_event(
    event_type: str,
    details: Dict[str, Any],
    invoice_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    match_id: Optional[str] = None,
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "invoice_id": invoice_id,
        "transaction_id": transaction_id,
        "match_id": match_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)
