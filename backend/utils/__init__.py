"""
Utils Package

Provides utility modules for:
- errors: Domain error taxonomy shared by ingestion and reconciliation
- validation_errors: Mapping of domain errors onto HTTP responses
"""

from .errors import (
    ReconciliationError,
    ParseError,
    ValidationError,
    ConflictError,
    NotFoundError,
    StoreError,
)

__all__ = [
    'ReconciliationError',
    'ParseError',
    'ValidationError',
    'ConflictError',
    'NotFoundError',
    'StoreError',
]
