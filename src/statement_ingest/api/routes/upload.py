import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from statement_ingest.api.dependencies import get_extractor, get_ledger, get_reviewer_optional
from statement_ingest.capabilities.base import DuplicateReviewer, StatementExtractor
from statement_ingest.core import settings
from statement_ingest.documents.segmenter import is_supported_mime_type
from statement_ingest.duplicates.detector import DuplicateDetector
from statement_ingest.errors import TransactionStoreError
from statement_ingest.logger import get_logger
from statement_ingest.services.extraction import ExtractionDriver
from statement_ingest.services.page_extractor import PageExtractor
from statement_ingest.services.persistence import PersistenceCoordinator
from statement_ingest.stores.base import LedgerBackend

logger = get_logger(__name__)

router = APIRouter()


@router.post("/api/transactions/upload")
async def upload_statement(
    file: Annotated[UploadFile, File()],
    ledger: Annotated[LedgerBackend, Depends(get_ledger)],
    extractor: Annotated[StatementExtractor, Depends(get_extractor)],
    reviewer: Annotated[DuplicateReviewer | None, Depends(get_reviewer_optional)],
) -> StreamingResponse:
    mime_type = file.content_type or ""
    if not is_supported_mime_type(mime_type):
        raise HTTPException(status_code=400, detail="File must be a PDF or image (PNG/JPEG)")

    if file.size is not None and file.size > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file provided")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    logger.info(
        "[UPLOAD] Received '%s' (%s, %d bytes).",
        file.filename or "upload",
        mime_type,
        len(data),
    )

    # Catalogs and duplicate context are read once; the run never refreshes them.
    try:
        categories, accounts, recent = await asyncio.gather(
            ledger.get_categories(),
            ledger.get_accounts(),
            ledger.get_recent_transactions(settings.DUPLICATE_CONTEXT_SIZE),
        )
    except TransactionStoreError as exc:
        logger.error("[UPLOAD] Could not load ledger context: %s", exc)
        raise HTTPException(status_code=502, detail="Could not load ledger data") from exc

    driver = ExtractionDriver(PageExtractor(extractor, DuplicateDetector(reviewer=reviewer)))
    coordinator = PersistenceCoordinator(ledger, recent)
    events = driver.run(
        data,
        mime_type,
        categories=categories,
        accounts=accounts,
        existing=recent,
    )

    return StreamingResponse(
        coordinator.stream(events),
        media_type="application/x-ndjson",
        headers=settings.STREAM_HEADERS,
    )
