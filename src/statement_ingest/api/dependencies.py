from fastapi import HTTPException, Request

from statement_ingest.capabilities.base import DuplicateReviewer, StatementExtractor
from statement_ingest.stores.base import LedgerBackend


def get_ledger(request: Request) -> LedgerBackend:
    ledger = getattr(request.app.state, "ledger", None)
    if not ledger:
        raise HTTPException(status_code=500, detail="Ledger not initialized")
    return ledger


def get_extractor(request: Request) -> StatementExtractor:
    extractor = getattr(request.app.state, "extractor", None)
    if not extractor:
        raise HTTPException(status_code=503, detail="Statement extraction not configured")
    return extractor


def get_reviewer_optional(request: Request) -> DuplicateReviewer | None:
    return getattr(request.app.state, "reviewer", None)
