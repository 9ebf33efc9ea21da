"""
Reconciliation Core - Error Taxonomy

Every failure raised by the ingestion and reconciliation services is a
ReconciliationError subclass so callers (and the HTTP boundary) can map
them without inspecting messages:

- ParseError:      statement unusable (zero rows parsed)
- ValidationError: missing identifiers, malformed amounts/dates/options
- ConflictError:   reconciliation invariant would be violated
- NotFoundError:   unknown invoice / transaction / match id
- StoreError:      persistence collaborator failed (original kept as __cause__)
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base exception for the ingestion and reconciliation core"""

    code = "reconciliation_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ParseError(ReconciliationError):
    """Raised when a statement yields no usable rows"""

    code = "parse_error"


class ValidationError(ReconciliationError):
    """Raised for malformed input at the service boundary"""

    code = "validation_error"


class ConflictError(ReconciliationError):
    """Raised when an operation would break a one-active-match invariant"""

    code = "conflict"


class NotFoundError(ReconciliationError):
    """Raised when a referenced record does not exist"""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class StoreError(ReconciliationError):
    """Raised when the persistence layer fails; never carries raw driver errors"""

    code = "store_error"
