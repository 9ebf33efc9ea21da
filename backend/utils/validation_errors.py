"""
Structured Error Response Utilities

Translates domain errors into HTTP responses at the API boundary.
Helps the UI distinguish bad input, missing records, reconciliation
conflicts and storage outages.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "validation_error"
             | "parse_error" | "not_found" | "conflict" | "store_error",
    "parameter": "account_id",
    "message": "account_id is required"
}
"""

import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import HTTPException, status

from utils.errors import (
    ConflictError,
    NotFoundError,
    ParseError,
    ReconciliationError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# Most specific class first
DOMAIN_ERROR_STATUS = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ParseError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        """
        Create a missing parameter error response.

        Args:
            parameter: Name of the missing parameter
            message: Optional custom message

        Returns:
            Structured error dict
        """
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)

        Returns:
            Structured error dict
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def domain_error(error: ReconciliationError) -> dict:
        """Structured body for a ReconciliationError."""
        response = {
            "error": error.code,
            "parameter": None,
            "message": error.message
        }
        if error.details:
            response["details"] = error.details
        return response


def raise_missing_parameter(parameter: str, message: Optional[str] = None) -> NoReturn:
    """
    Raise HTTPException with structured missing parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> NoReturn:
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def http_status_for(error: ReconciliationError) -> int:
    for error_type, status_code in DOMAIN_ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def raise_from_domain(error: ReconciliationError) -> NoReturn:
    """
    Re-raise a domain error as HTTPException.

    StoreError details are not exposed; the message is generic and the
    original is logged.
    """
    status_code = http_status_for(error)

    if isinstance(error, StoreError):
        logger.error(f"Storage failure: {error.message}")
        detail: Dict[str, Any] = {
            "error": error.code,
            "parameter": None,
            "message": "Storage temporarily unavailable"
        }
    else:
        detail = ValidationErrorResponse.domain_error(error)

    raise HTTPException(status_code=status_code, detail=detail) from error


def require_parameter(value: Optional[str], parameter: str) -> str:
    """Return the stripped value, or raise a structured 422 when blank."""
    if not value or not value.strip():
        raise_missing_parameter(parameter)
    return value.strip()
