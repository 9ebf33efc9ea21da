"""
Reconciliation API Endpoints

REST API for statement import and invoice reconciliation:
- POST /reconciliation/import/{account_id} - Import a bank statement export
- POST /reconciliation/import/{account_id}/preview - Dry-run an import
- GET /reconciliation/invoices/{invoice_id}/suggestions - Ranked candidates
- GET /reconciliation/invoices/{invoice_id}/best-match - Top candidate
- POST /reconciliation/invoices/{invoice_id}/propose - Store suggestions for review
- GET /reconciliation/auto-matchable - High confidence matches across invoices
- POST /reconciliation/auto-match - Confirm every auto-matchable suggestion
- POST /reconciliation/matches - Confirm a match
- POST /reconciliation/matches/{match_id}/confirm - Approve a proposal
- POST /reconciliation/matches/{match_id}/reject - Reject a proposal
- DELETE /reconciliation/matches/{match_id} - Unmatch
- POST /reconciliation/transactions/{transaction_id}/ignore - Ignore transaction
- POST /reconciliation/transactions/{transaction_id}/unignore - Un-ignore transaction
- GET /reconciliation/status - Module status and transaction counts
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from database.memory_store import create_memory_stores
from database.repositories import Stores
from database.sql_store import create_sql_stores
from ingestion.service import ImportOptions, StatementImportService
from reconciliation.services.matching_service import MatchingService
from reconciliation.services.reconciliation_service import ReconciliationService
from utils.errors import ReconciliationError
from utils.validation_errors import raise_from_domain, raise_missing_parameter, require_parameter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request Models ====================

class ConfirmMatchRequest(BaseModel):
    """Request to confirm an invoice/transaction match."""
    invoice_id: str = Field(..., min_length=1, description="Invoice being paid")
    transaction_id: str = Field(..., min_length=1, description="Bank transaction paying it")
    decider_id: Optional[str] = Field(default=None, description="User taking the decision")
    notes: Optional[str] = Field(default=None, max_length=1000)
    score: Optional[int] = Field(default=None, ge=0, le=100, description="Defaults to 100")


class DecisionRequest(BaseModel):
    """Request body for approving or rejecting a proposal."""
    decider_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=1000, description="Rejection reason or note")


# ==================== Dependencies ====================

_memory_stores: Optional[Stores] = None


def get_stores() -> Stores:
    """
    Stores used by the endpoints.

    Defaults to process-local in-memory stores; ``server.create_app`` binds
    ``get_sql_stores`` instead when DATABASE_URL is configured.
    """
    global _memory_stores
    if _memory_stores is None:
        _memory_stores = create_memory_stores()
    return _memory_stores


def get_sql_stores(db: AsyncSession = Depends(get_db)) -> Stores:
    return create_sql_stores(db)


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed to {action}")


# ==================== Import ====================

@router.post("/import/{account_id}", summary="Import bank statement")
async def import_statement(
    account_id: str,
    request: Request,
    encoding: Optional[str] = Query(default=None, description="Source encoding, detected when omitted"),
    skip_duplicates: bool = Query(default=True),
    update_existing: bool = Query(default=False),
    strict: bool = Query(default=False),
    stores: Stores = Depends(get_stores)
):
    """
    Import a semicolon-separated bank statement export.

    The request body is the raw file content. Rows already imported for
    the account are skipped unless ``update_existing`` or ``strict`` is set.
    """
    account_id = require_parameter(account_id, "account_id")
    raw = await request.body()
    if not raw:
        raise_missing_parameter("body", "Statement file content is required")

    try:
        options = ImportOptions(
            encoding=encoding,
            skip_duplicates=skip_duplicates,
            update_existing=update_existing,
            strict=strict
        )
        service = StatementImportService(stores.transactions)
        result = await service.import_statement(raw, account_id, options)
        return result.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("import statement", e)


@router.post("/import/{account_id}/preview", summary="Preview bank statement import")
async def preview_import(
    account_id: str,
    request: Request,
    encoding: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    stores: Stores = Depends(get_stores)
):
    """
    Parse a statement and report new and duplicate rows without saving.
    """
    account_id = require_parameter(account_id, "account_id")
    raw = await request.body()
    if not raw:
        raise_missing_parameter("body", "Statement file content is required")

    try:
        service = StatementImportService(stores.transactions)
        result = await service.preview(raw, account_id, encoding=encoding, limit=limit)
        return result.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("preview statement", e)


# ==================== Suggestions ====================

@router.get("/invoices/{invoice_id}/suggestions", summary="Match suggestions for invoice")
async def get_suggestions(
    invoice_id: str,
    min_score: Optional[int] = Query(default=None, ge=0, le=100),
    max_suggestions: Optional[int] = Query(default=None, ge=1, le=100),
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    """
    Rank candidate bank transactions for an invoice.

    Returns scored suggestions with their breakdown; nothing is persisted.
    """
    try:
        service = MatchingService.from_stores(stores)
        suggestions = await service.suggest_for_invoice(
            invoice_id,
            min_score=min_score,
            max_suggestions=max_suggestions,
            account_id=account_id
        )
        return {
            "invoice_id": invoice_id,
            "suggestions": [s.to_dict() for s in suggestions],
            "count": len(suggestions)
        }

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("get suggestions", e)


@router.get("/invoices/{invoice_id}/best-match", summary="Best match for invoice")
async def get_best_match(
    invoice_id: str,
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    try:
        service = MatchingService.from_stores(stores)
        best = await service.get_best_match(invoice_id, account_id=account_id)
        return {
            "invoice_id": invoice_id,
            "best_match": best.to_dict() if best else None
        }

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("get best match", e)


@router.post("/invoices/{invoice_id}/propose", summary="Store suggestions as proposals")
async def propose_matches(
    invoice_id: str,
    min_score: Optional[int] = Query(default=None, ge=0, le=100),
    max_suggestions: Optional[int] = Query(default=None, ge=1, le=100),
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    try:
        service = MatchingService.from_stores(stores)
        matches = await service.propose_matches(
            invoice_id,
            min_score=min_score,
            max_suggestions=max_suggestions,
            account_id=account_id
        )
        return {
            "invoice_id": invoice_id,
            "matches": [m.to_dict() for m in matches],
            "count": len(matches)
        }

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("propose matches", e)


@router.get("/auto-matchable", summary="High confidence matches")
async def get_auto_matchable(
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    """
    Best suggestion of every unmatched invoice that is safe to confirm
    without review.
    """
    try:
        service = MatchingService.from_stores(stores)
        suggestions = await service.get_auto_matchable(account_id=account_id)
        return {
            "suggestions": [s.to_dict() for s in suggestions],
            "count": len(suggestions)
        }

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("get auto-matchable suggestions", e)


@router.post("/auto-match", summary="Confirm auto-matchable suggestions")
async def run_auto_match(
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    try:
        service = ReconciliationService.from_stores(stores)
        result = await service.auto_match(account_id=account_id)
        return result.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("run auto-match", e)


# ==================== Match Decisions ====================

@router.post("/matches", summary="Confirm match")
async def confirm_match(
    request: ConfirmMatchRequest,
    stores: Stores = Depends(get_stores)
):
    """
    Confirm that a bank transaction pays an invoice.

    The transaction becomes matched and the invoice paid. Returns 409 when
    either side already has an active match.
    """
    try:
        service = ReconciliationService.from_stores(stores)
        match = await service.confirm_match(
            request.invoice_id,
            request.transaction_id,
            decider_id=request.decider_id,
            notes=request.notes,
            score=request.score
        )
        return match.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("confirm match", e)


@router.post("/matches/{match_id}/confirm", summary="Approve proposed match")
async def confirm_proposed_match(
    match_id: str,
    request: Optional[DecisionRequest] = None,
    stores: Stores = Depends(get_stores)
):
    request = request or DecisionRequest()
    try:
        service = ReconciliationService.from_stores(stores)
        match = await service.confirm_proposed(
            match_id, decider_id=request.decider_id, notes=request.reason
        )
        return match.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("confirm proposed match", e)


@router.post("/matches/{match_id}/reject", summary="Reject match")
async def reject_match(
    match_id: str,
    request: Optional[DecisionRequest] = None,
    stores: Stores = Depends(get_stores)
):
    """
    Reject a proposed match. A confirmed match is unmatched.
    """
    request = request or DecisionRequest()
    try:
        service = ReconciliationService.from_stores(stores)
        match = await service.reject_match(
            match_id, decider_id=request.decider_id, reason=request.reason
        )
        return match.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("reject match", e)


@router.delete("/matches/{match_id}", summary="Unmatch")
async def unmatch(
    match_id: str,
    decider_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    """
    Undo a confirmed match: the transaction returns to pending and the
    invoice to its previous status.
    """
    try:
        service = ReconciliationService.from_stores(stores)
        match = await service.unmatch(match_id, decider_id=decider_id)
        return match.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("unmatch", e)


# ==================== Transactions ====================

@router.post("/transactions/{transaction_id}/ignore", summary="Ignore transaction")
async def ignore_transaction(
    transaction_id: str,
    decider_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    try:
        service = ReconciliationService.from_stores(stores)
        transaction = await service.ignore(transaction_id, decider_id=decider_id)
        return transaction.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("ignore transaction", e)


@router.post("/transactions/{transaction_id}/unignore", summary="Un-ignore transaction")
async def unignore_transaction(
    transaction_id: str,
    decider_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    try:
        service = ReconciliationService.from_stores(stores)
        transaction = await service.unignore(transaction_id, decider_id=decider_id)
        return transaction.to_dict()

    except ReconciliationError as e:
        raise_from_domain(e)
    except Exception as e:
        raise _internal_error("unignore transaction", e)


# ==================== Status ====================

@router.get("/status", summary="Module status")
async def get_module_status(
    account_id: Optional[str] = Query(default=None),
    stores: Stores = Depends(get_stores)
):
    """
    Get reconciliation module status.

    Returns thresholds in use and transaction counts per reconciliation
    status.
    """
    settings = get_settings()
    try:
        counts = await stores.transactions.count_by_status(account_id)
    except ReconciliationError as e:
        raise_from_domain(e)

    return {
        "module": "reconciliation",
        "status": "operational",
        "version": settings.API_VERSION,
        "thresholds": {
            "min_score": settings.MATCH_MIN_SCORE,
            "best_match_min_score": settings.BEST_MATCH_MIN_SCORE,
            "auto_match_min_score": settings.AUTO_MATCH_MIN_SCORE,
            "date_window_days": settings.MATCH_DATE_WINDOW_DAYS,
            "amount_tolerance_percent": settings.MATCH_AMOUNT_TOLERANCE_PERCENT,
        },
        "transactions": counts,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
