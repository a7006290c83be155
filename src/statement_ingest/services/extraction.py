import asyncio
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass

from statement_ingest.documents.segmenter import segment_document
from statement_ingest.logger import get_logger
from statement_ingest.models import Account, CandidateTransaction, Category, StoredTransaction
from statement_ingest.services.page_extractor import PageExtractor

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    page_number: int
    total_pages: int


@dataclass(frozen=True)
class TransactionEvent:
    transaction: CandidateTransaction
    page_number: int


ExtractionEvent = ProgressEvent | TransactionEvent


class ExtractionDriver:
    """Runs the page extractor over a document, one page at a time.

    Page N+1 is not requested until the consumer has pulled every event of
    page N, and page N's candidates are part of the comparable set by then.
    """

    def __init__(self, page_extractor: PageExtractor) -> None:
        self.page_extractor = page_extractor

    async def run(
        self,
        data: bytes,
        mime_type: str,
        *,
        categories: Sequence[Category],
        accounts: Sequence[Account],
        existing: Sequence[StoredTransaction],
    ) -> AsyncGenerator[ExtractionEvent, None]:
        pages = await asyncio.to_thread(segment_document, data, mime_type)
        if not pages:
            logger.info("[EXTRACT] Document has no pages.")
            return

        existing_context = list(existing)
        seen_candidates: list[CandidateTransaction] = []

        for page in pages:
            yield ProgressEvent(page_number=page.page_number, total_pages=page.total_pages)

            try:
                candidates = await self.page_extractor.extract(
                    page,
                    categories=categories,
                    accounts=accounts,
                    existing=existing_context,
                    prior_candidates=seen_candidates,
                )
            except Exception as exc:
                logger.error(
                    "[EXTRACT] Page %s/%s failed, continuing with next page: %s",
                    page.page_number,
                    page.total_pages,
                    exc,
                )
                continue

            seen_candidates.extend(candidates)
            for candidate in candidates:
                yield TransactionEvent(transaction=candidate, page_number=page.page_number)
